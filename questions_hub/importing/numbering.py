"""
Question and tour numbering rules.

`NumberingState` validates that question numbers form a sequence and decides
whether the package numbers questions globally (the counter keeps growing
across tours) or per tour (every tour restarts at 0 or 1). The decision is
taken at the first tour boundary that disambiguates it and never revisited.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .normalizer import normalize_apostrophes

_ROMAN_VALUES = {"I": 1, "V": 5, "X": 10, "L": 50, "C": 100, "D": 500, "M": 1000}
_CYRILLIC_LOOKALIKES = str.maketrans({"І": "I", "і": "I", "Х": "X", "х": "X"})


class NumberingMode(str, Enum):
    UNKNOWN = "unknown"
    PER_TOUR = "per_tour"
    GLOBAL = "global"


class QuestionFormat(str, Enum):
    UNKNOWN = "unknown"
    NAMED = "named"  # "Запитання N"
    NUMBERED = "numbered"  # "N."


def parse_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


@dataclass
class NumberingState:
    expected_in_tour: Optional[int] = None
    expected_global: Optional[int] = None
    mode: NumberingMode = NumberingMode.UNKNOWN

    def start_tour(self) -> None:
        self.expected_in_tour = None

    def is_expected_next(self, number: str) -> bool:
        """Non-mutating check used to let a real question through a numbered source list."""
        qn = parse_int(number)
        if qn is None:
            return False
        if self.expected_in_tour is None and self.expected_global is None:
            return qn in (0, 1)
        return qn == self.expected_in_tour or qn == self.expected_global

    def accept(self, number: str) -> bool:
        """
        Returns True when `number` continues the sequence and advances the
        expectations. Resolves the numbering mode on the first question of a
        tour when the mode is still unknown.
        """
        qn = parse_int(number)
        if qn is None:
            return False

        # First question of the package.
        if self.expected_global is None:
            if qn in (0, 1):
                self.expected_global = qn + 1
                self.expected_in_tour = qn + 1
                return True
            return False

        if self.expected_in_tour is None:
            if self.mode == NumberingMode.UNKNOWN:
                if qn == self.expected_global:
                    self.mode = NumberingMode.GLOBAL
                elif qn in (0, 1):
                    self.mode = NumberingMode.PER_TOUR
                else:
                    return False

            if self.mode == NumberingMode.GLOBAL:
                if qn != self.expected_global:
                    return False
                self.expected_global = qn + 1
                self.expected_in_tour = qn + 1
                return True

            if qn in (0, 1):
                # global counter is left alone in per-tour mode
                self.expected_in_tour = qn + 1
                return True
            return False

        if self.mode == NumberingMode.GLOBAL:
            if qn != self.expected_global:
                return False
            self.expected_global = qn + 1
            self.expected_in_tour = qn + 1
            return True

        if self.mode == NumberingMode.PER_TOUR:
            if qn != self.expected_in_tour:
                return False
            self.expected_in_tour = qn + 1
            return True

        # Still unknown inside a tour: accept either sequence, lock when only one fits.
        ok_in_tour = qn == self.expected_in_tour
        ok_global = qn == self.expected_global
        if not ok_in_tour and not ok_global:
            return False
        if ok_global and not ok_in_tour:
            self.mode = NumberingMode.GLOBAL
        elif ok_in_tour and not ok_global:
            self.mode = NumberingMode.PER_TOUR
        self.expected_in_tour = qn + 1
        if ok_global:
            self.expected_global = qn + 1
        return True


def roman_to_number(roman: str) -> Optional[str]:
    """'ІІІ' (Cyrillic) or 'III' -> '3'. None for invalid numerals or values outside 1..50."""
    normalized = roman.translate(_CYRILLIC_LOOKALIKES).upper()
    result = 0
    prev_value = 0
    for ch in reversed(normalized):
        value = _ROMAN_VALUES.get(ch)
        if value is None:
            return None
        if value < prev_value:
            result -= value
        else:
            result += value
        prev_value = value
    if result <= 0 or result > 50:
        return None
    return str(result)


def ordinal_to_number(ordinal: str) -> str:
    normalized = (normalize_apostrophes(ordinal) or ordinal).lower()
    if normalized.startswith("перш"):
        return "1"
    if normalized.startswith("друг"):
        return "2"
    if normalized.startswith("трет"):
        return "3"
    if normalized.startswith("четв"):
        return "4"
    if normalized.startswith("п") and "ят" in normalized:
        return "5"
    if normalized.startswith("шост"):
        return "6"
    if normalized.startswith("сьом") or normalized.startswith("сём"):
        return "7"
    if normalized.startswith("вось"):
        return "8"
    if normalized.startswith("дев"):
        return "9"
    return "1"
