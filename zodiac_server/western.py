"""
Western astrology calculation engine.

Handles:
- Planetary positions (tropical or sidereal longitude, sign, house)
- House cusps for the registered house systems
- Aspect detection within one chart or between two (synastry)
- Fixed-column text descriptions of planets, houses and aspects

Uses Swiss Ephemeris with data files (ephe/ directory) when present and
falls back to the built-in Moshier ephemeris for the major planets.

The description functions are the only output the report pipeline reads:
column_parser.py splits them back into fields, so their layout (columns
separated by 2-9 spaces, one entry per line) is a contract.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import swisseph as swe

from zodiac_server import config
from zodiac_server.aspect_sets import get_aspect_set

logger = logging.getLogger(__name__)

# Point Swiss Ephemeris to data files
swe.set_ephe_path(str(config.EPHE_PATH))


# ============================================================
# CONSTANTS
# ============================================================

ZODIAC_SIGNS = [
    "Aries", "Taurus", "Gemini", "Cancer", "Leo", "Virgo",
    "Libra", "Scorpio", "Sagittarius", "Capricorn", "Aquarius", "Pisces"
]

# Names must stay single words: descriptions are split on spaces
PLANETS = {
    "Sun": swe.SUN,
    "Moon": swe.MOON,
    "Mercury": swe.MERCURY,
    "Venus": swe.VENUS,
    "Mars": swe.MARS,
    "Jupiter": swe.JUPITER,
    "Saturn": swe.SATURN,
    "Uranus": swe.URANUS,
    "Neptune": swe.NEPTUNE,
    "Pluto": swe.PLUTO,
    "Node": swe.TRUE_NODE,
    "Chiron": swe.CHIRON,
}

ROMAN_NUMERALS = ["I", "II", "III", "IV", "V", "VI",
                  "VII", "VIII", "IX", "X", "XI", "XII"]


@dataclass(frozen=True)
class Zodiac:
    id: int
    name: str
    sidereal_mode: Optional[int] = None


@dataclass(frozen=True)
class HouseSystem:
    id: int
    name: str
    code: bytes


ZODIACS = {
    0: Zodiac(0, "Tropical"),
    1: Zodiac(1, "Sidereal (Lahiri)", swe.SIDM_LAHIRI),
    2: Zodiac(2, "Sidereal (Fagan/Bradley)", swe.SIDM_FAGAN_BRADLEY),
}

HOUSE_SYSTEMS = {
    0: HouseSystem(0, "Placidus", b'P'),
    1: HouseSystem(1, "Koch", b'K'),
    2: HouseSystem(2, "Regiomontanus", b'R'),
    3: HouseSystem(3, "Campanus", b'C'),
    4: HouseSystem(4, "Equal", b'E'),
    5: HouseSystem(5, "Whole Sign", b'W'),
}


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass
class PlanetPosition:
    name: str
    longitude: float
    speed: float
    house: int = 0

    @property
    def retrograde(self) -> bool:
        return self.speed < 0


@dataclass
class Aspect:
    name: str
    planet_a: str
    planet_b: str
    exact_angle: float
    orb: float
    applying: Optional[bool] = None


@dataclass
class Horoscope:
    zodiac: Zodiac
    house_system: HouseSystem
    planets: list = field(default_factory=list)
    cusps: list = field(default_factory=list)
    ascendant: float = 0.0
    midheaven: float = 0.0
    aspects: list = field(default_factory=list)


# ============================================================
# HELPERS
# ============================================================

def _longitude_to_sign(longitude: float) -> dict:
    """Convert ecliptic longitude to sign, degree, minutes."""
    longitude = _normalize_angle(longitude)
    sign_index = int(longitude / 30)
    degree_in_sign = longitude - (sign_index * 30)
    degrees = int(degree_in_sign)
    minutes = int((degree_in_sign - degrees) * 60)
    return {
        "sign": ZODIAC_SIGNS[sign_index % 12],
        "degree": degrees,
        "minutes": minutes,
    }


def _to_julian(moment: datetime) -> float:
    """Convert a UTC datetime to Julian Day."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    decimal_hours = moment.hour + moment.minute / 60.0 + moment.second / 3600.0
    return swe.julday(moment.year, moment.month, moment.day, decimal_hours)


def _normalize_angle(angle: float) -> float:
    """Normalize angle to 0-360 range."""
    return angle % 360.0


def _angle_distance(lon1: float, lon2: float) -> float:
    """Shortest angular distance between two longitudes."""
    diff = abs(lon1 - lon2) % 360.0
    if diff > 180.0:
        diff = 360.0 - diff
    return diff


def _flags_for(zodiac: Zodiac) -> int:
    flags = swe.FLG_SWIEPH | swe.FLG_SPEED
    if zodiac.sidereal_mode is not None:
        swe.set_sid_mode(zodiac.sidereal_mode)
        flags |= swe.FLG_SIDEREAL
    return flags


def assign_house(planet_lon, cusp_longitudes):
    """Determine which house a planet falls in based on cusp longitudes."""
    for i in range(12):
        cusp_start = cusp_longitudes[i]
        cusp_end = cusp_longitudes[(i + 1) % 12]

        if cusp_start < cusp_end:
            if cusp_start <= planet_lon < cusp_end:
                return i + 1
        else:  # wraps around 0°/360°
            if planet_lon >= cusp_start or planet_lon < cusp_end:
                return i + 1
    return 1  # fallback


# ============================================================
# POSITIONS & HOUSES
# ============================================================

def planetary_positions(jd: float, flags: int) -> list:
    """
    Compute planetary positions for a Julian Day.

    Bodies the ephemeris cannot compute (Chiron without data files) are
    logged and left out.
    """
    positions = []
    for name, planet_id in PLANETS.items():
        try:
            result, _ = swe.calc_ut(jd, planet_id, flags)
        except swe.Error as e:
            logger.warning("Skipping %s: %s", name, e)
            continue
        positions.append(PlanetPosition(name, _normalize_angle(result[0]), result[3]))
    return positions


def house_cusps(jd: float, latitude: float, longitude: float,
                system: HouseSystem, flags: int = 0):
    """
    Compute the 12 house cusps plus Ascendant and Midheaven.

    Returns:
        (cusps, ascendant, midheaven); cusps is a list of 12 longitudes
    """
    cusps, ascmc = swe.houses_ex(jd, latitude, longitude, system.code,
                                 flags & swe.FLG_SIDEREAL)
    return list(cusps[:12]), ascmc[0], ascmc[1]


# ============================================================
# ASPECT DETECTION
# ============================================================

def find_aspects(positions_a: list, positions_b: list, aspect_set_id: int,
                 skip_same: bool = False) -> list:
    """
    Find aspects between two lists of planet positions.

    Works for natal-to-natal (same list both args) or chart-to-chart
    (synastry). Only the aspects defined by the aspect set are tested.

    Returns:
        List of Aspect, sorted by tightness of orb.
    """
    aspect_defs = get_aspect_set(aspect_set_id).aspects
    aspects_found = []
    seen = set()

    for pos_a in positions_a:
        for pos_b in positions_b:
            if skip_same and pos_a.name == pos_b.name:
                continue

            # Avoid duplicate pairs within one chart
            if skip_same:
                pair_key = tuple(sorted([pos_a.name, pos_b.name]))
                if pair_key in seen:
                    continue
            else:
                pair_key = (pos_a.name, pos_b.name)

            distance = _angle_distance(pos_a.longitude, pos_b.longitude)

            for aspect in aspect_defs:
                deviation = abs(distance - aspect.angle)
                if deviation > aspect.orb:
                    continue

                # Applying = getting closer to exact after one day
                applying = None
                if pos_a.speed or pos_b.speed:
                    future_distance = _angle_distance(
                        _normalize_angle(pos_a.longitude + pos_a.speed),
                        _normalize_angle(pos_b.longitude + pos_b.speed),
                    )
                    applying = abs(future_distance - aspect.angle) < deviation

                aspects_found.append(Aspect(
                    name=aspect.name,
                    planet_a=pos_a.name,
                    planet_b=pos_b.name,
                    exact_angle=round(distance, 2),
                    orb=round(deviation, 2),
                    applying=applying,
                ))
                seen.add(pair_key)
                break  # Only one aspect per pair

    aspects_found.sort(key=lambda a: a.orb)
    return aspects_found


# ============================================================
# CHART COMPUTATION
# ============================================================

def calculate_horoscope(record) -> Horoscope:
    """
    Compute the horoscope for a chart record.

    Args:
        record: anything with gmt, location (longitude, latitude, elevation),
                zodiac, house_system and aspect_set attributes

    Returns:
        Horoscope with planets (house assigned), cusps and natal aspects
    """
    zodiac = ZODIACS[record.zodiac]
    system = HOUSE_SYSTEMS[record.house_system]
    flags = _flags_for(zodiac)
    jd = _to_julian(record.gmt)

    planets = planetary_positions(jd, flags)
    cusps, asc, mc = house_cusps(jd, record.location.latitude,
                                 record.location.longitude, system, flags)
    for planet in planets:
        planet.house = assign_house(planet.longitude, cusps)

    return Horoscope(
        zodiac=zodiac,
        house_system=system,
        planets=planets,
        cusps=cusps,
        ascendant=asc,
        midheaven=mc,
        aspects=find_aspects(planets, planets, record.aspect_set, skip_same=True),
    )


def synastry_aspects(first: Horoscope, second: Horoscope, aspect_set_id: int) -> list:
    """Aspects from the planets of one chart to the planets of another."""
    return find_aspects(first.planets, second.planets, aspect_set_id)


# ============================================================
# DESCRIPTIONS
# ============================================================

def _columns(*values) -> str:
    """Join values into columns padded with 2-9 spaces."""
    cells = [f"{str(v):<8}  " for v in values[:-1]]
    return "".join(cells) + str(values[-1])


def describe_planet(planet: PlanetPosition) -> str:
    """One line: name, degrees, sign, minutes, house in Roman numerals."""
    pos = _longitude_to_sign(planet.longitude)
    house = ROMAN_NUMERALS[planet.house - 1] if 1 <= planet.house <= 12 else "-"
    return _columns(planet.name, pos["degree"], pos["sign"],
                    f"{pos['minutes']:02d}", house)


def describe_houses(horoscope: Horoscope) -> str:
    """Header line, then one line per cusp ending in degrees, sign, minutes."""
    lines = [f"Houses ({horoscope.house_system.name}, {horoscope.zodiac.name}):"]
    for i, cusp in enumerate(horoscope.cusps):
        pos = _longitude_to_sign(cusp)
        lines.append(_columns(f"House {ROMAN_NUMERALS[i]}", pos["degree"],
                              pos["sign"], f"{pos['minutes']:02d}"))
    return "\n".join(lines)


def describe_aspect(aspect: Aspect) -> str:
    """Space-separated: type, participants, orb."""
    degrees = int(aspect.orb)
    minutes = int((aspect.orb - degrees) * 60)
    return f"{aspect.name} {aspect.planet_a}-{aspect.planet_b} {degrees}°{minutes:02d}'"
