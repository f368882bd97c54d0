from __future__ import annotations

from typing import List

from .models import DocBlock, ParseResult
from .names import parse_author_list
from .normalizer import normalize_apostrophes, normalize_whitespace_and_dashes
from .patterns import EDITORS_LABEL

MAX_TITLE_BLOCKS = 3
TITLE_FONT_SIZE_RATIO = 0.70


def parse_package_header(header_blocks: List[DocBlock], result: ParseResult) -> None:
    """
    Fills title, editors and preamble of `result` from the blocks seen before
    the first tour. Title blocks come first; every later non-blank block is an
    editors line or a preamble line.
    """
    if not header_blocks:
        return

    title_blocks = determine_title_blocks(header_blocks)
    result.title = normalize_apostrophes(
        " ".join(normalize_whitespace_and_dashes(b.text) for b in title_blocks)
    )

    preamble_lines: List[str] = []
    for block in header_blocks[len(title_blocks):]:
        text = normalize_whitespace_and_dashes(block.text)
        if not text:
            continue
        match = EDITORS_LABEL.match(text)
        if match:
            result.editors.extend(parse_author_list(match.group(1)))
        else:
            preamble_lines.append(normalize_apostrophes(text))

    if preamble_lines:
        result.preamble = "\n".join(preamble_lines)


def determine_title_blocks(header_blocks: List[DocBlock]) -> List[DocBlock]:
    """
    Picks up to three leading blocks as the title. With font sizes available
    a block joins the title while its size stays within 70% of the first one
    (and keeps a Title/Heading style when the first has it). Without sizes
    the leading run of Title/Heading-styled blocks wins, else the first block.
    """
    if not header_blocks:
        return []

    candidates = header_blocks[:MAX_TITLE_BLOCKS]
    first = candidates[0]
    if is_title_terminator(first.text):
        return []

    first_has_title_style = has_title_or_heading_style(first)

    if first.font_size_half_points:
        reference = first.font_size_half_points
        selected = [first]
        for block in candidates[1:]:
            if is_title_terminator(block.text):
                break
            if first_has_title_style and not has_title_or_heading_style(block):
                break
            if block.font_size_half_points is not None:
                if block.font_size_half_points / reference < TITLE_FONT_SIZE_RATIO:
                    break
            selected.append(block)
        return selected

    styled: List[DocBlock] = []
    for block in candidates:
        if is_title_terminator(block.text) or not has_title_or_heading_style(block):
            break
        styled.append(block)
    if styled:
        return styled
    return [first]


def has_title_or_heading_style(block: DocBlock) -> bool:
    style = (block.style_id or "").lower()
    return "title" in style or "heading" in style


def is_title_terminator(text: str) -> bool:
    """Host-instruction brackets and editor lines end the title."""
    if not text or not text.strip():
        return False
    trimmed = text.lstrip()
    return trimmed.startswith("[") or bool(EDITORS_LABEL.match(trimmed))
