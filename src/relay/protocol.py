"""
Water controller serial line protocol.

The controller sends one ASCII CSV line per sample:

    BUTTON,UP_LOW,UP_HIGH,RIGHT_LOW,RIGHT_HIGH,DOWN_LOW,DOWN_HIGH,LEFT_LOW,LEFT_HIGH

Every field is 0 or 1. A direction reporting HIGH must also report LOW.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Tuple

from .exceptions import (
    FieldCountError,
    IntegerParseError,
    InvalidButtonValueError,
    InvalidControllerCombinationError,
    InvalidControllerLevelError,
)


FIELD_COUNT = 9
BUTTON_INDEX = 0

# (direction, low index, high index) in field-scan order
DIRECTION_FIELDS: Tuple[Tuple[str, int, int], ...] = (
    ("up", 1, 2),
    ("right", 3, 4),
    ("down", 5, 6),
    ("left", 7, 8),
)

_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_INT32_MIN = -(2 ** 31)
_INT32_MAX = 2 ** 31 - 1
_INT32_DIGITS = 10


class Level(Enum):
    NO_INPUT = "no_input"
    LOW = "low"
    HIGH = "high"


@dataclass(frozen=True)
class DirectionLevel:
    """Reading of a single direction; ``raw`` keeps the field magnitude."""

    level: Level
    raw: int = 0

    @classmethod
    def no_input(cls) -> "DirectionLevel":
        return cls(Level.NO_INPUT, 0)

    @classmethod
    def low(cls, raw: int = 1) -> "DirectionLevel":
        return cls(Level.LOW, raw)

    @classmethod
    def high(cls, raw: int = 1) -> "DirectionLevel":
        return cls(Level.HIGH, raw)

    def __str__(self) -> str:
        names = {Level.NO_INPUT: "NoInput", Level.LOW: "Low", Level.HIGH: "High"}
        return f"{names[self.level]}({self.raw})"


@dataclass(frozen=True)
class ButtonState:
    is_pushed: bool


@dataclass(frozen=True)
class ControllerState:
    left: DirectionLevel
    right: DirectionLevel
    up: DirectionLevel
    down: DirectionLevel


@dataclass(frozen=True)
class SerialFrame:
    """One validated sample from the controller."""

    button: ButtonState
    controller: ControllerState

    def __str__(self) -> str:
        c = self.controller
        return (
            f"Input(button: is_pushed={self.button.is_pushed}, controller: "
            f"left={c.left}, right={c.right}, up={c.up}, down={c.down})"
        )


def parse_line(line: str) -> SerialFrame:
    """
    Parse one serial line into a validated frame.

    Fields are checked left to right, then the four direction pairs in the
    order up, right, down, left. The first violation is raised.

    Args:
        line: Raw line with or without surrounding whitespace

    Returns:
        SerialFrame: The validated frame

    Raises:
        ParseError: One of its subclasses, describing the violated rule
    """
    trimmed = line.strip()
    if not trimmed:
        raise FieldCountError(FIELD_COUNT, 0)

    tokens = trimmed.split(",")
    if len(tokens) != FIELD_COUNT:
        raise FieldCountError(FIELD_COUNT, len(tokens))

    values: List[int] = []
    for index, token in enumerate(tokens):
        value = _parse_int(index, token.strip())
        if index == BUTTON_INDEX:
            if value not in (0, 1):
                raise InvalidButtonValueError(value)
        elif value not in (0, 1):
            raise InvalidControllerLevelError(index, value)
        values.append(value)

    levels = {
        name: _resolve_pair(values[low_index], values[high_index], low_index, high_index)
        for name, low_index, high_index in DIRECTION_FIELDS
    }

    return SerialFrame(
        button=ButtonState(is_pushed=values[BUTTON_INDEX] == 1),
        controller=ControllerState(**levels),
    )


def _parse_int(index: int, token: str) -> int:
    if not token:
        raise IntegerParseError(index, token, "cannot parse integer from empty string")
    if not _INT_PATTERN.fullmatch(token):
        raise IntegerParseError(index, token, "invalid digit found in string")

    sign = "-" if token[0] == "-" else ""
    digits = token.lstrip("+-").lstrip("0") or "0"
    # int32 needs at most 10 significant digits
    if len(digits) > _INT32_DIGITS:
        overflow = "small" if sign else "large"
        raise IntegerParseError(index, token, f"number too {overflow} to fit in target type")

    value = int(sign + digits)
    if value > _INT32_MAX:
        raise IntegerParseError(index, token, "number too large to fit in target type")
    if value < _INT32_MIN:
        raise IntegerParseError(index, token, "number too small to fit in target type")
    return value


def _resolve_pair(low: int, high: int, low_index: int, high_index: int) -> DirectionLevel:
    if high == 1 and low == 0:
        raise InvalidControllerCombinationError(low_index, high_index, low, high)

    if high > 0:
        return DirectionLevel.high(high)
    if low > 0:
        return DirectionLevel.low(low)
    return DirectionLevel.no_input()
