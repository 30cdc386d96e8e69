"""
Plain-text view of the current tab.

This is what the batch snapshot draws and what single-record mode prints:
an info block per record (name, local date/time, GMT offset, place), then
the engine descriptions of the primary chart, then synastry aspects when
the tab holds a partner chart.
"""

from zodiac_server import western


def degree_to_string(value: float) -> str:
    """Decimal degrees as D°MM'SS"."""
    sign = "-" if value < 0 else ""
    total = round(abs(value) * 3600)
    degrees, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{sign}{degrees}°{minutes:02d}'{seconds:02d}\""


def timezone_label(hours: int) -> str:
    if hours > 0:
        return f"GMT +{hours}"
    if hours < 0:
        return f"GMT {hours}"
    return "GMT"


def place_label(record) -> str:
    """The record's place name, or its coordinates when it has none."""
    if record.location_name:
        return record.location_name
    latitude = degree_to_string(record.location.latitude)
    longitude = degree_to_string(record.location.longitude)
    return f"{latitude}N  {longitude}E"


def record_info(record) -> str:
    dt = record.local_time
    return "\n".join([
        record.name,
        f"{dt:%Y-%m-%d} {dt:%a} {dt:%H:%M:%S} ({timezone_label(record.timezone)})",
        place_label(record),
    ])


def render_lines(records: list) -> list:
    """All text lines for a tab's records, primary first."""
    lines = []
    for record in records:
        lines.extend(record_info(record).split("\n"))
        lines.append("")

    if not records or records[0].horoscope is None:
        return lines

    horoscope = records[0].horoscope
    lines.extend(western.describe_planet(p) for p in horoscope.planets)
    lines.append("")
    lines.extend(western.describe_houses(horoscope).split("\n"))
    lines.append("")
    lines.extend(western.describe_aspect(a) for a in horoscope.aspects)

    if len(records) > 1 and records[1].horoscope is not None:
        lines.append("")
        lines.append(f"Synastry: {records[0].name} / {records[1].name}")
        lines.extend(western.describe_aspect(a) for a in western.synastry_aspects(
            horoscope, records[1].horoscope, records[0].aspect_set))
    return lines


def render_text(records: list) -> str:
    return "\n".join(render_lines(records))
