"""
Split engine description text back into fields.

Descriptions are human-readable lines whose columns are separated by runs
of 2-9 spaces. Every run of spaces (single spaces included) becomes one
field delimiter, so the collapsing order below must not change:

    "Sun       23        Leo       15        VII"
        -> ["Sun", "23", "Leo", "15", "VII"]

Anything that does not fit the expected shape raises
ParseContractViolation; the caller abandons the whole report.
"""

import enum
import re
from dataclasses import dataclass
from typing import Optional

from zodiac_server.errors import ParseContractViolation

DELIMITER = "@"
NOISE = (" Pole", "\"", ".", "\n", "\r")

ROMAN_TO_HOUSE = {
    "I": 1, "II": 2, "III": 3, "IV": 4, "V": 5, "VI": 6,
    "VII": 7, "VIII": 8, "IX": 9, "X": 10, "XI": 11, "XII": 12,
}

_DELIMITER_RUN = re.compile(re.escape(DELIMITER) + "{2,}")


class AspectType(enum.Enum):
    CONJUNCTION = "Conjunction"
    OPPOSITION = "Opposition"
    TRINE = "Trine"
    QUADRATURE = "Quadrature"


# Substring checks run in this order
_RETAINED_ASPECTS = ("Trine", "Conjunction", "Opposition", "Quadrature")


@dataclass
class PlanetEntry:
    name: str
    sign_degrees: int
    sign_name: str
    sign_minutes: int
    house_roman: str
    house_number: int


@dataclass
class HouseEntry:
    house_number: int
    sign_name: str
    sign_degrees: int
    sign_minutes: int


@dataclass
class AspectEntry:
    aspect_type: str        # label as printed, e.g. "Opposition"
    participants: str

    @property
    def kind(self) -> AspectType:
        for label in _RETAINED_ASPECTS:
            if label in self.aspect_type:
                return AspectType(label)
        raise ValueError(self.aspect_type)


# ============================================================
# TOKENIZER
# ============================================================

def split_columns(line: str) -> list:
    """
    Split one description line into its fields.

    1. drop noise (" Pole", quotes, dots, line breaks)
    2. replace runs of 9 spaces, then 8, ... then 1 with the delimiter
    3. collapse repeated delimiters
    4. split
    """
    for noise in NOISE:
        line = line.replace(noise, "")
    for width in range(9, 0, -1):
        line = line.replace(" " * width, DELIMITER)
    line = _DELIMITER_RUN.sub(DELIMITER, line)
    return line.split(DELIMITER)


def _field(fields: list, index: int, line: str) -> str:
    try:
        return fields[index]
    except IndexError:
        raise ParseContractViolation(
            f"expected at least {abs(index) if index < 0 else index + 1} fields, got {len(fields)}",
            line,
        ) from None


def _int_field(fields: list, index: int, line: str) -> int:
    value = _field(fields, index, line)
    try:
        return int(value)
    except ValueError:
        raise ParseContractViolation(f"field {index} is not an integer ({value!r})", line) from None


def house_number(roman: str) -> int:
    """Roman house label to 1..12, -1 if unrecognised."""
    return ROMAN_TO_HOUSE.get(roman, -1)


# ============================================================
# LINE KINDS
# ============================================================

def parse_planet_line(line: str) -> PlanetEntry:
    """Fields read by position: name, degrees, sign, minutes, house."""
    fields = split_columns(line)
    roman = _field(fields, 4, line)
    return PlanetEntry(
        name=_field(fields, 0, line),
        sign_degrees=_int_field(fields, 1, line),
        sign_name=_field(fields, 2, line),
        sign_minutes=_int_field(fields, 3, line),
        house_roman=roman,
        house_number=house_number(roman),
    )


def parse_house_line(line: str, ordinal: int) -> HouseEntry:
    """
    Fields read from the end: ... degrees, sign, minutes.

    The house label before them can take any number of tokens.
    """
    fields = split_columns(line)
    return HouseEntry(
        house_number=ordinal,
        sign_name=_field(fields, -2, line),
        sign_degrees=_int_field(fields, -3, line),
        sign_minutes=_int_field(fields, -1, line),
    )


def parse_houses(text: str) -> list:
    """Parse a whole house description; its first line is a header."""
    lines = text.split("\n")
    return [parse_house_line(line, i) for i, line in enumerate(lines) if i > 0]


def parse_aspect_line(line: str) -> Optional[AspectEntry]:
    """
    Split on single spaces: type, participants, ...

    Returns None for aspect types the report does not keep.
    """
    tokens = line.split(" ")
    label = tokens[0]
    if not any(kept in label for kept in _RETAINED_ASPECTS):
        return None
    return AspectEntry(aspect_type=label, participants=_field(tokens, 1, line))
