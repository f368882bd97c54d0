from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Set, Tuple

from . import patterns as pt
from .header import parse_package_header
from .models import (
    ANSWER_RELATED_SECTIONS,
    AssetReference,
    BlockDto,
    DocBlock,
    ParseResult,
    ParserSection,
    QuestionDto,
    QuestionNumberingMode,
    TourDto,
    TourType,
)
from .names import convert_full_name_to_nominative, parse_author_list
from .normalizer import normalize_apostrophes, normalize_whitespace_and_dashes, strip_accents
from .numbering import (
    NumberingMode,
    NumberingState,
    QuestionFormat,
    ordinal_to_number,
    parse_int,
    roman_to_number,
)

logger = logging.getLogger(__name__)

_CONTENT_SECTIONS = frozenset(
    {
        ParserSection.QUESTION_TEXT,
        ParserSection.HANDOUT,
        ParserSection.HOST_INSTRUCTIONS,
        ParserSection.ANSWER,
        ParserSection.ACCEPTED_ANSWERS,
        ParserSection.REJECTED_ANSWERS,
        ParserSection.COMMENT,
        ParserSection.SOURCE,
    }
)

# Label table in priority order.
_LABELS = [
    (pt.ANSWER_LABEL, ParserSection.ANSWER),
    (pt.ACCEPTED_LABEL, ParserSection.ACCEPTED_ANSWERS),
    (pt.REJECTED_LABEL, ParserSection.REJECTED_ANSWERS),
    (pt.COMMENT_LABEL, ParserSection.COMMENT),
    (pt.SOURCE_LABEL, ParserSection.SOURCE),
    (pt.AUTHOR_LABEL, ParserSection.AUTHORS),
    (pt.HANDOUT_MARKER, ParserSection.HANDOUT),
]

# Question attribute per content section.
_SECTION_FIELDS = {
    ParserSection.QUESTION_TEXT: "text",
    ParserSection.HANDOUT: "handout_text",
    ParserSection.HOST_INSTRUCTIONS: "host_instructions",
    ParserSection.ANSWER: "answer",
    ParserSection.ACCEPTED_ANSWERS: "accepted_answers",
    ParserSection.REJECTED_ANSWERS: "rejected_answers",
    ParserSection.COMMENT: "comment",
    ParserSection.SOURCE: "source",
}

_TRIMMED_FIELDS = (
    "text",
    "answer",
    "accepted_answers",
    "rejected_answers",
    "comment",
    "source",
    "handout_text",
    "host_instructions",
)


@dataclass
class AuthorRange:
    start: int
    end: int
    authors: List[str]


@dataclass
class ParserContext:
    """Mutable state of a single `PackageParser.parse` call."""

    result: ParseResult = field(default_factory=ParseResult)
    section: ParserSection = ParserSection.PACKAGE_HEADER
    tour: Optional[TourDto] = None
    block: Optional[BlockDto] = None
    question: Optional[QuestionDto] = None
    header_blocks: List[DocBlock] = field(default_factory=list)
    pending_assets: List[Tuple[AssetReference, ParserSection]] = field(default_factory=list)
    author_ranges: List[AuthorRange] = field(default_factory=list)
    numbering: NumberingState = field(default_factory=NumberingState)
    format: QuestionFormat = QuestionFormat.UNKNOWN
    inside_handout_bracket: bool = False

    # region per-block bookkeeping
    doc_block: Optional[DocBlock] = None
    question_created_in_block: bool = False
    associated_assets: Set[str] = field(default_factory=set)
    handout_marker_in_block: bool = False
    previous_question_in_block: Optional[QuestionDto] = None
    section_before_answer: ParserSection = ParserSection.QUESTION_TEXT
    # endregion

    def start_block(self, block: DocBlock) -> None:
        self.doc_block = block
        self.question_created_in_block = False
        self.associated_assets = set()
        self.handout_marker_in_block = False
        self.previous_question_in_block = None

    def add_header_block(self) -> None:
        block = self.doc_block
        if block is not None and not any(b is block for b in self.header_blocks):
            self.header_blocks.append(block)


class PackageParser:
    """
    Turns a flat list of document blocks into a package tree
    (tours -> optional blocks -> questions) using line-level heuristics.

    The parser never raises on malformed input: anything it cannot place
    becomes preamble or question content, and gaps (missing answers, extra
    images) are reported through `ParseResult.warnings`. A fresh context is
    created for every call, so one instance can be shared across threads.
    """

    def parse(self, blocks: List[DocBlock], assets: Optional[List[AssetReference]] = None) -> ParseResult:
        ctx = ParserContext()
        prepared = merge_asset_only_blocks(blocks)
        logger.info("Parsing %s blocks (%s assets)", len(prepared), len(assets or []))

        for block in prepared:
            self._process_block(block, ctx)

        self._finalize(ctx)
        logger.info(
            "Parsed %s tours, %s questions, confidence: %.0f%%",
            len(ctx.result.tours),
            ctx.result.total_questions,
            ctx.result.confidence * 100,
        )
        return ctx.result

    # region block and line dispatch
    def _process_block(self, block: DocBlock, ctx: ParserContext) -> None:
        text = normalize_whitespace_and_dashes(block.text)
        if not text and not block.assets:
            self._process_blank_line(ctx)
            return

        ctx.start_block(block)
        if text:
            for line in (raw.strip() for raw in text.split("\n")):
                if not line:
                    self._process_blank_line(ctx)
                    continue
                section_before = ctx.section
                was_inside_bracket = ctx.inside_handout_bracket
                question_before = ctx.question
                self._process_line(line, ctx)
                if (
                    block.assets
                    and ctx.question is not None
                    and ctx.question is question_before
                    and (section_before == ParserSection.HANDOUT or was_inside_bracket)
                    and ctx.section in ANSWER_RELATED_SECTIONS
                ):
                    ctx.section_before_answer = section_before
                    self._associate_assets_before_answer(block.assets, ctx)

        self._associate_block_assets(block.assets, ctx)

    def _process_blank_line(self, ctx: ParserContext) -> None:
        if ctx.question is None or ctx.inside_handout_bracket:
            return
        if ctx.section == ParserSection.AUTHORS:
            # a blank line ends the author list
            ctx.section = ParserSection.COMMENT
            return
        if ctx.section in _CONTENT_SECTIONS:
            attr = _SECTION_FIELDS[ctx.section]
            setattr(ctx.question, attr, append_blank_line(getattr(ctx.question, attr)))

    def _process_line(self, line: str, ctx: ParserContext) -> None:
        if ctx.inside_handout_bracket:
            self._process_bracket_continuation(line, ctx)
            return
        if self._try_tour_start(line, ctx):
            return
        if self._try_block_start(line, ctx):
            return
        if self._try_author_range(line, ctx):
            return
        if self._try_question_start(line, ctx):
            return
        if ctx.tour is None:
            ctx.add_header_block()
            return
        if self._try_host_instructions(line, ctx):
            return
        if self._try_bracketed_handout(line, ctx):
            return
        self._process_label_or_content(line, ctx)

    # endregion

    # region tours and blocks
    def _try_tour_start(self, line: str, ctx: ParserContext) -> bool:
        tour_type = TourType.REGULAR
        preamble: Optional[str] = None

        if _is_warmup_tour_start(line) or self._is_warmup_question_label(line, ctx):
            tour_type = TourType.WARMUP
            number = "0"
        elif pt.SHOOTOUT_TOUR_START.match(line) or pt.SHOOTOUT_TOUR_START_DASHED.match(line):
            tour_type = TourType.SHOOTOUT
            number = "П"
        else:
            parsed = parse_tour_start(line)
            if parsed is None:
                return False
            number, preamble = parsed

        self._save_current_question(ctx)
        if ctx.tour is None and ctx.header_blocks:
            parse_package_header(ctx.header_blocks, ctx.result)

        ctx.tour = TourDto(
            number=number,
            order_index=len(ctx.result.tours),
            type=tour_type,
            preamble=preamble,
        )
        ctx.result.tours.append(ctx.tour)
        ctx.block = None
        ctx.question = None
        ctx.section = ParserSection.TOUR_HEADER
        ctx.numbering.start_tour()
        ctx.format = QuestionFormat.UNKNOWN
        logger.debug("Found tour: %s, type: %s", number, tour_type.value)
        return True

    def _is_warmup_question_label(self, line: str, ctx: ParserContext) -> bool:
        if ctx.result.tours:
            return False
        if ctx.doc_block is None or not ctx.doc_block.is_bold:
            return False
        return bool(pt.WARMUP_QUESTION_LABEL.match(line))

    def _try_block_start(self, line: str, ctx: ParserContext) -> bool:
        name: Optional[str] = None
        editor_genitive: Optional[str] = None

        match = pt.BLOCK_START.match(line)
        if match:
            name = match.group(1)
        else:
            named = pt.BLOCK_START_WITH_NAME.match(line)
            if not named:
                return False
            editor_genitive = named.group(1).strip()

        if ctx.tour is None:
            return False

        self._save_current_question(ctx)
        ctx.block = BlockDto(order_index=len(ctx.tour.blocks), name=name)
        if editor_genitive:
            nominative = convert_full_name_to_nominative(editor_genitive)
            ctx.block.editors.append(strip_accents(normalize_apostrophes(nominative)))
        ctx.tour.blocks.append(ctx.block)
        if ctx.tour.fold_questions_into_leading_block():
            ctx.result.warnings.append(f"Тур {ctx.tour.number}: запитання перед першим блоком винесено в окремий блок")
        ctx.question = None
        ctx.section = ParserSection.BLOCK_HEADER
        logger.debug(
            "Found block: %s (editor: %s) in tour %s",
            name or editor_genitive or "(unnamed)",
            ctx.block.editors[0] if ctx.block.editors else "(none)",
            ctx.tour.number,
        )
        return True

    # endregion

    # region questions
    def _try_author_range(self, line: str, ctx: ParserContext) -> bool:
        if ctx.question is not None:
            return False
        match = pt.AUTHOR_RANGE_LABEL.match(line)
        if not match:
            return False
        authors = parse_author_list(match.group(3).strip())
        if authors:
            ctx.author_ranges.append(AuthorRange(int(match.group(1)), int(match.group(2)), authors))
        return True

    def _try_question_start(self, line: str, ctx: ParserContext) -> bool:
        parsed = parse_question_start(line)
        if parsed is None:
            return False
        number, remaining, detected_format = parsed

        # Numbered lines before the first tour belong to the header.
        if ctx.tour is None:
            return False

        # Numbered source lists stay in Source unless the number is the next question.
        if (
            detected_format == QuestionFormat.NUMBERED
            and ctx.section == ParserSection.SOURCE
            and not ctx.numbering.is_expected_next(number)
        ):
            self._process_as_regular_content(line, ctx)
            return True

        if ctx.format == QuestionFormat.NAMED and detected_format == QuestionFormat.NUMBERED:
            self._process_as_regular_content(line, ctx)
            return True

        if not ctx.numbering.accept(number):
            self._process_as_regular_content(line, ctx)
            return True

        if ctx.format == QuestionFormat.UNKNOWN:
            ctx.format = detected_format

        self._flush_pending_assets_to_current_question(ctx)
        if ctx.question is not None:
            ctx.previous_question_in_block = ctx.question

        self._save_current_question(ctx)
        self._ensure_default_tour_exists(ctx)

        ctx.question = QuestionDto(number=number)
        ctx.section = ParserSection.QUESTION_TEXT
        ctx.question_created_in_block = True
        ctx.handout_marker_in_block = False

        self._apply_pending_assets_to_new_question(ctx)
        self._process_text_after_question_number(remaining, ctx)
        logger.debug("Found question: %s", number)
        return True

    def _process_as_regular_content(self, line: str, ctx: ParserContext) -> None:
        if ctx.tour is not None:
            self._process_label_or_content(line, ctx)
        else:
            ctx.add_header_block()

    def _process_text_after_question_number(self, remaining: str, ctx: ParserContext) -> None:
        if not remaining or not remaining.strip():
            return
        question = ctx.question

        handout = pt.HANDOUT_MARKER.match(remaining)
        if handout:
            ctx.handout_marker_in_block = True
            ctx.section = ParserSection.HANDOUT
            content = handout.group(1).strip()
            if content:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(content))
            return

        bracketed = extract_bracketed_handout(remaining)
        if bracketed is not None:
            handout_text, after = bracketed
            ctx.handout_marker_in_block = True
            ctx.section = ParserSection.QUESTION_TEXT
            if handout_text:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(handout_text))
            if after:
                question.text = append_text(question.text, normalize_apostrophes(after))
            return

        opening = extract_multiline_handout_opening(remaining)
        if opening is not None:
            ctx.handout_marker_in_block = True
            ctx.section = ParserSection.HANDOUT
            ctx.inside_handout_bracket = True
            if opening:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(opening))
            return

        host = extract_host_instructions(remaining)
        if host is not None:
            instructions, after = host
            question.host_instructions = append_text(question.host_instructions, normalize_apostrophes(instructions))
            if after:
                question.text = append_text(question.text, normalize_apostrophes(after))
            return

        question.text = append_text(question.text, normalize_apostrophes(remaining))

    # endregion

    # region handouts and host instructions
    def _try_host_instructions(self, line: str, ctx: ParserContext) -> bool:
        if ctx.question is None:
            return False
        host = extract_host_instructions(line)
        if host is None:
            return False
        instructions, after = host
        ctx.question.host_instructions = append_text(ctx.question.host_instructions, normalize_apostrophes(instructions))
        if after:
            ctx.question.text = append_text(ctx.question.text, normalize_apostrophes(after))
        return True

    def _try_bracketed_handout(self, line: str, ctx: ParserContext) -> bool:
        bracketed = extract_bracketed_handout(line)
        if bracketed is not None:
            handout_text, after = bracketed
            ctx.handout_marker_in_block = True
            if ctx.question is not None:
                if handout_text:
                    ctx.question.handout_text = append_text(ctx.question.handout_text, normalize_apostrophes(handout_text))
                if after:
                    ctx.question.text = append_text(ctx.question.text, normalize_apostrophes(after))
            ctx.section = ParserSection.QUESTION_TEXT
            return True

        opening = extract_multiline_handout_opening(line)
        if opening is not None:
            ctx.handout_marker_in_block = True
            ctx.section = ParserSection.HANDOUT
            ctx.inside_handout_bracket = True
            if ctx.question is not None and opening:
                ctx.question.handout_text = append_text(ctx.question.handout_text, normalize_apostrophes(opening))
            return True
        return False

    def _process_bracket_continuation(self, line: str, ctx: ParserContext) -> None:
        question = ctx.question
        close = pt.HANDOUT_MARKER_BRACKET_CLOSE.match(line)
        if close:
            ctx.inside_handout_bracket = False
            ctx.section = ParserSection.QUESTION_TEXT
            after = close.group(1).strip()
            if after and question is not None:
                question.text = append_text(question.text, normalize_apostrophes(after))
            return

        bracket_index = line.find("]")
        if bracket_index >= 0:
            ctx.inside_handout_bracket = False
            ctx.section = ParserSection.QUESTION_TEXT
            before = line[:bracket_index].strip()
            after = line[bracket_index + 1:].strip()
            if question is not None:
                if before:
                    question.handout_text = append_text(question.handout_text, normalize_apostrophes(before))
                if after:
                    question.text = append_text(question.text, normalize_apostrophes(after))
            return

        if line.strip() and question is not None:
            question.handout_text = append_text(question.handout_text, normalize_apostrophes(line))

    # endregion

    # region labels and content routing
    def _process_label_or_content(self, line: str, ctx: ParserContext) -> None:
        section, line = detect_label(line)
        if section is not None:
            ctx.section = section
            if section == ParserSection.HANDOUT:
                ctx.handout_marker_in_block = True

        if not line or not line.strip():
            return

        if ctx.section == ParserSection.HANDOUT and self._process_handout_brackets(line, ctx):
            return

        inline_index = find_inline_label_start(line)
        if inline_index > 0:
            before = line[:inline_index].strip()
            if before:
                self._append_to_section(ctx.section, before, ctx)
            self._process_label_or_content(line[inline_index:], ctx)
        else:
            self._append_to_section(ctx.section, line, ctx)

    def _process_handout_brackets(self, line: str, ctx: ParserContext) -> bool:
        """Bare brackets around handout content after a "Роздатка:" label."""
        question = ctx.question
        if line == "[":
            ctx.inside_handout_bracket = True
            return True
        if line == "]":
            ctx.inside_handout_bracket = False
            ctx.section = ParserSection.QUESTION_TEXT
            return True
        if line.startswith("[") and line.endswith("]"):
            content = line[1:-1].strip()
            if content and question is not None:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(content))
            ctx.section = ParserSection.QUESTION_TEXT
            return True
        if line.startswith("["):
            ctx.inside_handout_bracket = True
            content = line[1:].strip()
            if content and question is not None:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(content))
            return True
        if line.endswith("]"):
            content = line[:-1].strip()
            if content and question is not None:
                question.handout_text = append_text(question.handout_text, normalize_apostrophes(content))
            ctx.section = ParserSection.QUESTION_TEXT
            return True
        return False

    def _append_to_section(self, section: ParserSection, text: str, ctx: ParserContext) -> None:
        question = ctx.question
        if question is None:
            if section == ParserSection.TOUR_HEADER and ctx.tour is not None:
                match = pt.EDITORS_LABEL.match(text)
                if match:
                    ctx.tour.editors.extend(parse_author_list(match.group(1)))
                else:
                    ctx.tour.preamble = append_text(ctx.tour.preamble, normalize_apostrophes(text))
            elif section == ParserSection.BLOCK_HEADER and ctx.block is not None:
                match = pt.BLOCK_EDITORS_LABEL.match(text) or pt.EDITORS_LABEL.match(text)
                if match:
                    ctx.block.editors.extend(parse_author_list(match.group(1)))
                else:
                    ctx.block.preamble = append_text(ctx.block.preamble, normalize_apostrophes(text))
            return

        if section == ParserSection.AUTHORS:
            question.authors.extend(parse_author_list(text))
            return
        attr = _SECTION_FIELDS.get(section)
        if attr is None:
            return
        # Sources keep their apostrophes, they are mostly URLs.
        value = text if section == ParserSection.SOURCE else normalize_apostrophes(text)
        setattr(question, attr, append_text(getattr(question, attr), value))

    # endregion

    # region assets
    def _associate_assets_before_answer(self, assets: List[AssetReference], ctx: ParserContext) -> None:
        for asset in assets:
            if asset.file_name in ctx.associated_assets:
                continue
            if ctx.question is not None:
                section = ParserSection.HANDOUT if ctx.inside_handout_bracket else ctx.section_before_answer
                associate_asset(asset, section, ctx.question, ctx.result)
            else:
                ctx.pending_assets.append((asset, ctx.section_before_answer))
            ctx.associated_assets.add(asset.file_name)

    def _associate_block_assets(self, assets: List[AssetReference], ctx: ParserContext) -> None:
        unassociated = [a for a in assets if a.file_name not in ctx.associated_assets]
        if not unassociated:
            return

        if ctx.question is None:
            for asset in unassociated:
                ctx.pending_assets.append((asset, ctx.section))
                ctx.associated_assets.add(asset.file_name)
            return

        if ctx.previous_question_in_block is not None and not ctx.handout_marker_in_block:
            # Two questions in one block: the first image closes the previous question.
            first, rest = unassociated[0], unassociated[1:]
            associate_asset(first, ParserSection.COMMENT, ctx.previous_question_in_block, ctx.result)
            ctx.associated_assets.add(first.file_name)
            for asset in rest:
                associate_asset(asset, ParserSection.COMMENT, ctx.question, ctx.result)
                ctx.associated_assets.add(asset.file_name)
            return

        section = ParserSection.HANDOUT if ctx.inside_handout_bracket else ctx.section
        for asset in unassociated:
            associate_asset(asset, section, ctx.question, ctx.result)
            ctx.associated_assets.add(asset.file_name)

    def _flush_pending_assets_to_current_question(self, ctx: ParserContext) -> None:
        if ctx.question is None or not ctx.pending_assets:
            return
        for asset, section in ctx.pending_assets:
            associate_asset(asset, section, ctx.question, ctx.result)
        ctx.pending_assets.clear()

    def _apply_pending_assets_to_new_question(self, ctx: ParserContext) -> None:
        for asset, section in ctx.pending_assets:
            associate_asset(asset, section, ctx.question, ctx.result)
        ctx.pending_assets.clear()

    # endregion

    # region finalization
    def _save_current_question(self, ctx: ParserContext) -> None:
        if ctx.question is None or ctx.tour is None:
            return
        self._finalize_question(ctx.question, ctx)
        if ctx.block is not None:
            ctx.block.questions.append(ctx.question)
        else:
            ctx.tour.questions.append(ctx.question)

    def _finalize_question(self, question: QuestionDto, ctx: ParserContext) -> None:
        number = parse_int(question.number)
        if not question.authors and number is not None:
            for rule in ctx.author_ranges:
                if rule.start <= number <= rule.end:
                    question.authors.extend(rule.authors)
                    break

        if not question.has_text:
            ctx.result.warnings.append(f"Питання {question.number}: текст питання не знайдено")
        if not question.has_answer:
            ctx.result.warnings.append(f"Питання {question.number}: відповідь не знайдено")

    def _ensure_default_tour_exists(self, ctx: ParserContext) -> None:
        if ctx.tour is not None:
            return
        if ctx.header_blocks:
            parse_package_header(ctx.header_blocks, ctx.result)
        ctx.tour = TourDto(number="1")
        ctx.result.tours.append(ctx.tour)
        ctx.result.warnings.append("Тур не знайдено, створено тур за замовчуванням")

    def _finalize(self, ctx: ParserContext) -> None:
        result = ctx.result
        self._save_current_question(ctx)

        if not result.tours and ctx.header_blocks:
            parse_package_header(ctx.header_blocks, result)

        ensure_special_tour_positions(result)
        result.numbering_mode = detect_numbering_mode(result, ctx.numbering.mode)
        for index, tour in enumerate(result.tours):
            tour.order_index = index
        for tour in result.tours:
            for question in tour.all_questions:
                for attr in _TRIMMED_FIELDS:
                    value = getattr(question, attr)
                    if value is not None:
                        setattr(question, attr, trim_blank_lines(value))
        result.confidence = calculate_confidence(result)

    # endregion


def merge_asset_only_blocks(blocks: List[DocBlock]) -> List[DocBlock]:
    """
    Images are often anchored in an empty paragraph right after the text they
    illustrate. Such asset-only blocks are folded into the closest preceding
    block with text; the input list is left untouched.
    """
    merged: List[DocBlock] = []
    last_text_index: Optional[int] = None
    for block in blocks:
        has_text = bool(block.text and block.text.strip())
        if not has_text and block.assets and last_text_index is not None:
            target = merged[last_text_index]
            merged[last_text_index] = replace(target, assets=list(target.assets) + list(block.assets))
            continue
        merged.append(block)
        if has_text:
            last_text_index = len(merged) - 1
    return merged


def parse_tour_start(text: str) -> Optional[Tuple[str, Optional[str]]]:
    """Returns (tour number, preamble) for a regular tour heading."""
    for pattern in (
        pt.TOUR_START,
        pt.TOUR_START_WITH_COLON,
        pt.TOUR_START_DASHED,
        pt.NUMBER_TOUR_START,
        pt.TOUR_NUMBER_SIGN_START,
    ):
        match = pattern.match(text)
        if match:
            return match.group(1), None

    for pattern in (pt.TOUR_START_WITH_PREAMBLE, pt.TOUR_NUMBER_SIGN_START_WITH_PREAMBLE):
        match = pattern.match(text)
        if match:
            return match.group(1), match.group(2).strip()

    match = pt.TOUR_ROMAN_START.match(text)
    if match:
        number = roman_to_number(match.group(1))
        if number is not None:
            return number, None

    match = pt.TOUR_ROMAN_START_WITH_PREAMBLE.match(text)
    if match:
        number = roman_to_number(match.group(1))
        if number is not None:
            return number, match.group(2).strip()

    normalized = normalize_apostrophes(text) or text
    for pattern in (pt.ORDINAL_TOUR_START, pt.TOUR_ORDINAL_START):
        match = pattern.match(normalized)
        if match:
            return ordinal_to_number(match.group(1)), None
    return None


def parse_question_start(text: str) -> Optional[Tuple[str, str, QuestionFormat]]:
    """Returns (number, remaining text, format) when the line opens a question."""
    match = pt.QUESTION_START_NAMED_WITH_TEXT.match(text)
    if match:
        return match.group(1), match.group(2).strip(), QuestionFormat.NAMED
    match = pt.QUESTION_START_NAMED.match(text)
    if match:
        return match.group(1), "", QuestionFormat.NAMED
    match = pt.QUESTION_START_WITH_TEXT.match(text)
    if match:
        return match.group(1), match.group(2).strip(), QuestionFormat.NUMBERED
    match = pt.QUESTION_START_NUMBER_ONLY.match(text)
    if match:
        return match.group(1), "", QuestionFormat.NUMBERED
    return None


def _is_warmup_tour_start(text: str) -> bool:
    return bool(
        pt.WARMUP_TOUR_START.match(text)
        or pt.WARMUP_TOUR_START_DASHED.match(text)
        or pt.TOUR_ZERO_START.match(text)
    )


def detect_label(text: str) -> Tuple[Optional[ParserSection], str]:
    for pattern, section in _LABELS:
        match = pattern.match(text)
        if match:
            return section, match.group(1).strip()
    return None, text


def find_inline_label_start(text: str) -> int:
    """
    Index of the earliest accepted/rejected label after the line start, or -1.
    Other labels only count at the start of a line.
    """
    lowered = text.lower()
    indexes = [lowered.find(label.lower()) for label in pt.INLINE_LABELS]
    indexes = [i for i in indexes if i > 0]
    return min(indexes) if indexes else -1


def extract_host_instructions(text: str) -> Optional[Tuple[str, str]]:
    match = pt.HOST_INSTRUCTIONS_BRACKET.match(text)
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def extract_bracketed_handout(text: str) -> Optional[Tuple[str, str]]:
    match = pt.HANDOUT_MARKER_BRACKET.match(text)
    if not match:
        return None
    return match.group(1).strip(), match.group(2).strip()


def extract_multiline_handout_opening(text: str) -> Optional[str]:
    if "]" in text:
        return None
    match = pt.HANDOUT_MARKER_BRACKET_OPEN.match(text)
    if not match:
        return None
    return match.group(1).strip()


def associate_asset(
    asset: AssetReference,
    section: ParserSection,
    question: Optional[QuestionDto],
    result: Optional[ParseResult] = None,
) -> None:
    """Answer-related sections fill the comment slot, everything else the handout slot."""
    if question is None:
        return
    if section in ANSWER_RELATED_SECTIONS:
        if question.comment_asset_file_name is None:
            question.comment_asset_file_name = asset.file_name
        elif result is not None:
            result.warnings.append(
                f"Question {question.number}: extra comment asset ignored: {asset.file_name} "
                f"(already has: {question.comment_asset_file_name})"
            )
    else:
        if question.handout_asset_file_name is None:
            question.handout_asset_file_name = asset.file_name
        elif result is not None:
            result.warnings.append(
                f"Question {question.number}: extra handout asset ignored: {asset.file_name} "
                f"(already has: {question.handout_asset_file_name})"
            )


def ensure_special_tour_positions(result: ParseResult) -> None:
    warmup = next((t for t in result.tours if t.type == TourType.WARMUP), None)
    shootout = next((t for t in result.tours if t.type == TourType.SHOOTOUT), None)
    if warmup is not None:
        result.tours.remove(warmup)
        result.tours.insert(0, warmup)
    if shootout is not None:
        result.tours.remove(shootout)
        result.tours.append(shootout)


def detect_numbering_mode(result: ParseResult, mode: NumberingMode) -> QuestionNumberingMode:
    if any(parse_int(q.number) is None for t in result.tours for q in t.all_questions):
        return QuestionNumberingMode.MANUAL
    if mode == NumberingMode.PER_TOUR:
        return QuestionNumberingMode.PER_TOUR
    return QuestionNumberingMode.GLOBAL


def calculate_confidence(result: ParseResult) -> float:
    if not result.tours:
        return 0.0
    questions = [q for t in result.tours for q in t.all_questions]
    if not questions:
        return 0.2
    answer_ratio = sum(1 for q in questions if q.has_answer) / len(questions)
    text_ratio = sum(1 for q in questions if q.has_text) / len(questions)
    return answer_ratio * 0.6 + text_ratio * 0.4


def append_text(existing: Optional[str], new_text: str) -> str:
    if not existing or not existing.strip():
        return new_text
    return existing + "\n" + new_text


def append_blank_line(existing: Optional[str]) -> str:
    if not existing:
        return ""
    return existing + "\n"


def trim_blank_lines(text: Optional[str]) -> str:
    """Drops leading and trailing whitespace-only lines, keeps the inner ones."""
    if not text:
        return ""
    lines = text.split("\n")
    start, end = 0, len(lines) - 1
    while start <= end and not lines[start].strip():
        start += 1
    while end >= start and not lines[end].strip():
        end -= 1
    if start > end:
        return ""
    return "\n".join(lines[start:end + 1])
