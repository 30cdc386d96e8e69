"""
Runtime configuration for the zodiac server.

Data directories default to folders next to the package and can be moved
with environment variables:

    ZODIAC_SERVER_RECORDS   directory holding one <name>.json per chart record
    ZODIAC_SERVER_EPHE      Swiss Ephemeris data files (*.se1)
"""

import os
from dataclasses import dataclass
from pathlib import Path


_ROOT = Path(__file__).parent.parent

RECORDS_DIR = Path(os.environ.get("ZODIAC_SERVER_RECORDS", _ROOT / "user"))
EPHE_PATH = Path(os.environ.get("ZODIAC_SERVER_EPHE", _ROOT / "ephe"))

RECORD_SUFFIX = ".json"

# Fallback place for records created without a location
DEFAULT_LOCATION = (37.6184, 55.7512, 0.0)  # longitude, latitude, elevation
DEFAULT_LOCATION_NAME = "Moscow, Russia"

DEFAULT_ZODIAC = 0          # tropical
DEFAULT_HOUSE_SYSTEM = 0    # Placidus
DEFAULT_ASPECT_SET = 2      # standard single-chart set

CAPTURE_PERIOD_SECONDS = 1.0


@dataclass
class SessionConfig:
    """
    Settings the session manager is constructed with.

    ask_to_save: confirm before closing a tab whose primary record is dirty.
    zodiac / house_system / aspect_set: selectors applied to every record
        shown in the current tab.
    """
    records_dir: Path = RECORDS_DIR
    ask_to_save: bool = False
    default_location: tuple = DEFAULT_LOCATION
    default_location_name: str = DEFAULT_LOCATION_NAME
    zodiac: int = DEFAULT_ZODIAC
    house_system: int = DEFAULT_HOUSE_SYSTEM
    aspect_set: int = DEFAULT_ASPECT_SET
