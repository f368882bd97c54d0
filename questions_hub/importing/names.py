"""
Heuristics for Ukrainian personal names found in quiz packages.

Editors of a named block ("Блок Сергія Реви") and authors credited after
"у редакції" / "за ідеєю" are written in the genitive case; these helpers
bring them back to the nominative form used for author records.
"""

from __future__ import annotations

import re
from typing import List

from .normalizer import normalize_apostrophes, strip_accents

_LIST_SEPARATORS = re.compile(r"[,;]")
_JOINERS = re.compile(r" та | і | and ")
_EDITED_BY = re.compile(r"\s+[ув]\s+редакції\s+", re.IGNORECASE)
_BY_IDEA_OF = re.compile(r"\s+за\s+ідеєю\s+", re.IGNORECASE)
_CITY_IN_PARENTHESES = re.compile(r"\s*\([^)]*\)\s*")

_CONSONANTS = "бвгґджзйклмнпрстфхцчшщБВГҐДЖЗЙКЛМНПРСТФХЦЧШЩ"

# (genitive suffix, characters to cut, nominative replacement), checked in order
_LAST_NAME_SUFFIXES = [
    ("ського", 6, "ський"),
    ("цького", 6, "цький"),
    ("зького", 6, "зький"),
    ("ської", 5, "ська"),
    ("цької", 5, "цька"),
]


def parse_author_list(text: str) -> List[str]:
    """
    "Іван Петренко, Олена Коваль та Сергій Рева (Харків)." -> three names.
    Accents are stripped and apostrophes normalized so the same person
    always compares equal.
    """
    results: List[str] = []
    for chunk in _LIST_SEPARATORS.split(text):
        for piece in _JOINERS.split(chunk):
            name = normalize_apostrophes(strip_accents(piece.strip().rstrip(".,;")))
            if not name or not name.strip():
                continue
            results.extend(p for p in split_and_normalize_authors(name) if p.strip())
    return results


def strip_city(name: str) -> str:
    """'Станіслав Мерлян (Одеса)' -> 'Станіслав Мерлян'"""
    return _CITY_IN_PARENTHESES.sub(" ", name).strip()


def split_and_normalize_authors(author_text: str) -> List[str]:
    """
    Splits an author credit on "у/в редакції" and "за ідеєю". The first part
    is already nominative; every later part is converted from the genitive.
    Cities in parentheses are removed from all parts.
    """
    expanded: List[str] = []
    for part in _EDITED_BY.split(author_text):
        expanded.extend(_BY_IDEA_OF.split(part))

    results: List[str] = []
    for i, raw in enumerate(expanded):
        part = raw.strip().rstrip(".,;")
        if not part.strip():
            continue
        clean = strip_city(part)
        if not clean:
            continue
        if i > 0:
            clean = convert_full_name_to_nominative(clean)
        if clean.strip():
            results.append(clean)
    return results


def convert_full_name_to_nominative(full_name: str) -> str:
    parts = full_name.split()
    if not parts:
        return full_name
    if len(parts) == 1:
        return convert_to_nominative(parts[0])
    if len(parts) == 2:
        return f"{convert_first_name_to_nominative(parts[0])} {convert_last_name_to_nominative(parts[1])}"
    converted = []
    for idx, part in enumerate(parts):
        if idx == 0:
            converted.append(convert_first_name_to_nominative(part))
        elif idx == len(parts) - 1:
            converted.append(convert_last_name_to_nominative(part))
        else:
            converted.append(convert_to_nominative(part))
    return " ".join(converted)


def convert_first_name_to_nominative(genitive: str) -> str:
    if not genitive or not genitive.strip():
        return genitive
    return convert_to_nominative(genitive.strip())


def convert_last_name_to_nominative(genitive: str) -> str:
    if not genitive or not genitive.strip():
        return genitive
    name = genitive.strip()
    for suffix, cut, replacement in _LAST_NAME_SUFFIXES:
        if name.endswith(suffix):
            return name[:-cut] + replacement
    return convert_to_nominative(name)


def convert_to_nominative(genitive: str) -> str:
    """
    Single-word genitive -> nominative using suffix rules, most specific
    first. Words that match no rule are returned unchanged.
    """
    if not genitive or not genitive.strip() or len(genitive) < 3:
        return genitive
    name = genitive.strip()

    # Наталії -> Наталія
    if name.endswith("ії"):
        return name[:-2] + "ія"
    if name.endswith("ього"):
        return name[:-4] + "ій"
    if name.endswith("ого"):
        return name[:-3] + "ий"
    # Реви / Реві -> Рева
    if name.endswith("ві") or name.endswith("ви"):
        return name[:-2] + "ва"
    # Дарʼї -> Дарʼя
    if name.endswith("\u02bcї") or name.endswith("'ї"):
        return name[:-1] + "я"
    # Олени -> Олена, Катерини -> Катерина
    if name.endswith("ини") or name.endswith("ени"):
        return name[:-1] + "а"
    # Сергія -> Сергій
    if name.endswith("ія"):
        return name[:-2] + "ій"
    # Ігоря -> Ігор
    if name.endswith("ря"):
        return name[:-1]
    if name.endswith("ця"):
        return name[:-2] + "ць"
    # Едуарда -> Едуард, Голуба -> Голуб
    if name.endswith("а"):
        stem = name[:-1]
        if stem and stem[-1] in _CONSONANTS:
            return stem
    return name
