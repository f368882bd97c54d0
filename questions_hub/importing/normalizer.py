"""
Canonicalisation helpers for text coming out of documents.

Apostrophes are folded into the Ukrainian modifier letter U+02BC so that the
same word typed with different keyboards compares equal. Source text is kept
with its original apostrophes because it usually holds URLs.
"""

from __future__ import annotations

from typing import Optional

MODIFIER_APOSTROPHE = "\u02bc"
COMBINING_ACUTE = "\u0301"

_APOSTROPHE_VARIANTS = ("'", "\u2019", "\u02c8")
_DASH_VARIANTS = ("\u2013", "\u2014")


def normalize_apostrophes(text: Optional[str]) -> Optional[str]:
    if not text:
        return text
    for variant in _APOSTROPHE_VARIANTS:
        text = text.replace(variant, MODIFIER_APOSTROPHE)
    return text


def normalize_whitespace_and_dashes(text: Optional[str]) -> str:
    if not text:
        return ""
    text = text.replace("\u00a0", " ")
    for dash in _DASH_VARIANTS:
        text = text.replace(dash, "-")
    return text.strip()


def normalize(text: Optional[str]) -> str:
    return (normalize_apostrophes(normalize_whitespace_and_dashes(text)) or "").strip()


def normalize_excluding_apostrophes(text: Optional[str]) -> str:
    return normalize_whitespace_and_dashes(text)


def strip_accents(text: Optional[str]) -> Optional[str]:
    if not text:
        return text
    return text.replace(COMBINING_ACUTE, "")
