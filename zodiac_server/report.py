"""
Batch report: chart descriptions -> parsed fields -> one JSON document.

Output layout (member order is kept):

    {
      "params":    {"ms", "n", "a", "m", "d", "h", "min", "gmt", "lat", "lon", "ciudad"},
      "psc":       {"<planet>": {"g", "m", "s", "h", "rh"}, ...},
      "asp":       {"asp0": {"t", "p"}, ...},
      "pc":        {"h1": {"s", "g", "m"}, ...},
      "jsonHades": <auxiliary JSON fragment, or "">
    }

Nothing touches the output path until the whole document is built, so a
parse failure never leaves a partial report on disk.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from zodiac_server import column_parser
from zodiac_server.errors import MalformedArguments
from zodiac_server.western import describe_aspect, describe_houses, describe_planet

logger = logging.getLogger(__name__)

BATCH_ARGUMENTS = (
    "record_name", "year", "month", "day", "hour", "minute", "gmt",
    "lat", "lon", "place", "json_out", "ms", "quit_seconds",
    "capture_path", "capture_resolution", "hades_path",
)


# ============================================================
# BATCH PARAMETERS
# ============================================================

def parse_resolution(text: str) -> tuple:
    """'1280x720' -> (1280, 720)."""
    parts = text.split("x")
    if len(parts) != 2:
        raise MalformedArguments(f"Capture resolution must look like WIDTHxHEIGHT, got {text!r}")
    try:
        width, height = int(parts[0]), int(parts[1])
    except ValueError:
        raise MalformedArguments(f"Capture resolution must be integers, got {text!r}") from None
    if width <= 0 or height <= 0:
        raise MalformedArguments(f"Capture resolution must be positive, got {text!r}")
    return width, height


@dataclass
class BatchParams:
    """The sixteen positional batch arguments, validated."""
    record_name: str
    year: str
    month: str
    day: str
    hour: str
    minute: str
    gmt: str
    lat: str
    lon: str
    place: str
    json_out: str
    ms: str
    quit_seconds: str
    capture_path: str
    capture_resolution: str
    hades_path: str

    @classmethod
    def from_args(cls, args: list) -> "BatchParams":
        if len(args) != len(BATCH_ARGUMENTS):
            raise MalformedArguments(
                f"Expected {len(BATCH_ARGUMENTS)} batch arguments, got {len(args)}")
        params = cls(*args)
        params.validate()
        return params

    def validate(self):
        for name in ("year", "month", "day", "hour", "minute", "gmt", "quit_seconds"):
            value = getattr(self, name)
            try:
                int(value)
            except ValueError:
                raise MalformedArguments(f"{name} must be an integer, got {value!r}") from None
        for name in ("lat", "lon"):
            value = getattr(self, name)
            try:
                float(value)
            except ValueError:
                raise MalformedArguments(f"{name} must be a number, got {value!r}") from None
        try:
            self.local_datetime()
        except ValueError as e:
            raise MalformedArguments(f"Invalid birth date/time: {e}") from None
        parse_resolution(self.capture_resolution)

    @property
    def gmt_offset(self) -> int:
        return int(self.gmt)

    @property
    def latitude(self) -> float:
        return float(self.lat)

    @property
    def longitude(self) -> float:
        return float(self.lon)

    @property
    def place_label(self) -> str:
        return self.place.replace("_", " ")

    @property
    def quit_after(self) -> int:
        return int(self.quit_seconds)

    @property
    def capture_size(self) -> tuple:
        return parse_resolution(self.capture_resolution)

    @property
    def json_path(self) -> Path:
        return Path(self.json_out.replace("\\", "/"))

    def local_datetime(self) -> datetime:
        return datetime(int(self.year), int(self.month), int(self.day),
                        int(self.hour), int(self.minute))

    def utc_datetime(self) -> datetime:
        """Clock time shifted by the GMT offset (local - offset hours)."""
        return self.local_datetime() - timedelta(hours=self.gmt_offset)

    def location_label(self) -> str:
        return f"{self.place_label}\nlat: {self.lat}\nlon: {self.lon}"

    def to_params(self) -> dict:
        return {
            "ms": self.ms,
            "n": self.record_name,
            "a": self.year,
            "m": self.month,
            "d": self.day,
            "h": self.hour,
            "min": self.minute,
            "gmt": self.gmt,
            "lat": self.lat,
            "lon": self.lon,
            "ciudad": self.place_label,
        }


# ============================================================
# SECTIONS
# ============================================================

def planet_section(planet_lines: list) -> dict:
    """psc: planets in sign and house, keyed by lower-cased planet name."""
    section = {}
    for line in planet_lines:
        entry = column_parser.parse_planet_line(line)
        section[entry.name.lower()] = {
            "g": entry.sign_degrees,
            "m": entry.sign_minutes,
            "s": entry.sign_name.lower(),
            "h": entry.house_number,
            "rh": entry.house_roman.lower(),
        }
    return section


def house_section(house_text: str) -> dict:
    """pc: house cusps keyed h1..h12 in engine order."""
    section = {}
    for entry in column_parser.parse_houses(house_text):
        section[f"h{entry.house_number}"] = {
            "s": entry.sign_name.lower(),
            "g": entry.sign_degrees,
            "m": entry.sign_minutes,
        }
    return section


def aspect_section(aspect_lines: list) -> dict:
    """asp: retained aspects only, numbered from 0."""
    section = {}
    for line in aspect_lines:
        entry = column_parser.parse_aspect_line(line)
        if entry is None:
            continue
        section[f"asp{len(section)}"] = {"t": entry.aspect_type, "p": entry.participants}
    return section


def read_auxiliary_fragment(path):
    """
    Contents of the auxiliary (Hades) JSON file.

    An unreadable or invalid file is not fatal: the report carries "" instead.
    """
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Auxiliary JSON %s unusable (%s), substituting empty string", path, e)
        return ""


# ============================================================
# ASSEMBLY
# ============================================================

def assemble_report(params: dict, planet_lines: list, house_text: str,
                    aspect_lines: list, hades="") -> dict:
    return {
        "params": params,
        "psc": planet_section(planet_lines),
        "asp": aspect_section(aspect_lines),
        "pc": house_section(house_text),
        "jsonHades": hades,
    }


def describe_horoscope(horoscope):
    """Engine descriptions for one horoscope: (planet lines, house text, aspect lines)."""
    planet_lines = [describe_planet(p) for p in horoscope.planets]
    house_text = describe_houses(horoscope)
    aspect_lines = [describe_aspect(a) for a in horoscope.aspects]
    return planet_lines, house_text, aspect_lines


def write_report(path, report: dict):
    """Write the report as UTF-8 JSON, replacing `path` in one step."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(report, indent=2, ensure_ascii=False).encode("utf-8")
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def generate_report(record, batch: BatchParams) -> Path:
    """
    Build and write the batch report for a loaded record.

    Raises ParseContractViolation (nothing written) if the engine output
    does not parse.
    """
    planet_lines, house_text, aspect_lines = describe_horoscope(record.horoscope)
    report = assemble_report(
        batch.to_params(),
        planet_lines,
        house_text,
        aspect_lines,
        read_auxiliary_fragment(batch.hades_path),
    )
    path = batch.json_path
    logger.info("Saving json file %s", path)
    write_report(path, report)
    return path
