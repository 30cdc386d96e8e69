"""
UTC offset lookup for a place and moment.

The zone is detected from coordinates and the offset taken at the given
moment, so historical DST is respected. Chart records store whole hours.
"""

import logging
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from timezonefinder import TimezoneFinder

logger = logging.getLogger(__name__)

_tf = TimezoneFinder()


def zone_name_at(latitude: float, longitude: float):
    """IANA zone name for the coordinates, or None over open sea."""
    return _tf.timezone_at(lat=latitude, lng=longitude)


def utc_offset_at(latitude: float, longitude: float, moment: datetime) -> int:
    """
    Whole-hour UTC offset in effect at (latitude, longitude) at `moment`.

    Falls back to this machine's local offset when no zone covers the
    coordinates. Fractional offsets are truncated toward zero.
    """
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    tz_name = zone_name_at(latitude, longitude)
    if tz_name is None:
        logger.warning("No timezone for (%s, %s), using local offset", latitude, longitude)
        offset = moment.astimezone().utcoffset()
    else:
        offset = moment.astimezone(ZoneInfo(tz_name)).utcoffset()

    return int(offset.total_seconds() / 3600)
