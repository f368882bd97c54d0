from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional


class TourType(str, Enum):
    REGULAR = "regular"
    WARMUP = "warmup"
    SHOOTOUT = "shootout"


class QuestionNumberingMode(str, Enum):
    GLOBAL = "global"
    PER_TOUR = "per_tour"
    MANUAL = "manual"


class PackageStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ImportJobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ImportStep(str, Enum):
    VALIDATING = "Validating"
    EXTRACTING = "Extracting"
    PARSING = "Parsing"
    IMPORTING = "Importing"
    FINALIZING = "Finalizing"


class ParserSection(str, Enum):
    PACKAGE_HEADER = "package_header"
    TOUR_HEADER = "tour_header"
    BLOCK_HEADER = "block_header"
    HOST_INSTRUCTIONS = "host_instructions"
    HANDOUT = "handout"
    QUESTION_TEXT = "question_text"
    ANSWER = "answer"
    ACCEPTED_ANSWERS = "accepted_answers"
    REJECTED_ANSWERS = "rejected_answers"
    COMMENT = "comment"
    SOURCE = "source"
    AUTHORS = "authors"


# Sections whose assets belong to the comment slot rather than the handout slot.
ANSWER_RELATED_SECTIONS = frozenset(
    {
        ParserSection.ANSWER,
        ParserSection.ACCEPTED_ANSWERS,
        ParserSection.REJECTED_ANSWERS,
        ParserSection.COMMENT,
        ParserSection.SOURCE,
        ParserSection.AUTHORS,
    }
)


@dataclass
class AssetReference:
    file_name: str
    relative_url: str
    content_type: str
    size_bytes: int = 0


@dataclass
class DocBlock:
    index: int
    text: str
    style_id: Optional[str] = None
    is_bold: bool = False
    is_italic: bool = False
    is_heading: bool = False
    heading_level: Optional[int] = None
    font_size_half_points: Optional[int] = None
    assets: List[AssetReference] = field(default_factory=list)


@dataclass
class ExtractionResult:
    blocks: List[DocBlock]
    assets: List[AssetReference] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class QuestionDto:
    number: str
    text: str = ""
    host_instructions: Optional[str] = None
    handout_text: Optional[str] = None
    handout_asset_file_name: Optional[str] = None
    answer: str = ""
    accepted_answers: Optional[str] = None
    rejected_answers: Optional[str] = None
    comment: Optional[str] = None
    comment_asset_file_name: Optional[str] = None
    source: Optional[str] = None
    authors: List[str] = field(default_factory=list)

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    @property
    def has_answer(self) -> bool:
        return bool(self.answer and self.answer.strip())


@dataclass
class BlockDto:
    order_index: int
    name: Optional[str] = None
    editors: List[str] = field(default_factory=list)
    preamble: Optional[str] = None
    questions: List[QuestionDto] = field(default_factory=list)


@dataclass
class TourDto:
    number: str
    order_index: int = 0
    type: TourType = TourType.REGULAR
    editors: List[str] = field(default_factory=list)
    preamble: Optional[str] = None
    comment: Optional[str] = None
    questions: List[QuestionDto] = field(default_factory=list)
    blocks: List[BlockDto] = field(default_factory=list)

    @property
    def is_warmup(self) -> bool:
        return self.type == TourType.WARMUP

    @property
    def is_shootout(self) -> bool:
        return self.type == TourType.SHOOTOUT

    @property
    def all_questions(self) -> List[QuestionDto]:
        if self.blocks:
            return [q for block in self.blocks for q in block.questions]
        return list(self.questions)

    def fold_questions_into_leading_block(self) -> bool:
        """A tour holds either direct questions or blocks, never both."""
        if not self.questions or not self.blocks:
            return False
        self.blocks.insert(0, BlockDto(order_index=0, questions=self.questions))
        self.questions = []
        for index, block in enumerate(self.blocks):
            block.order_index = index
        return True


@dataclass
class ParseResult:
    title: Optional[str] = None
    description: Optional[str] = None
    preamble: Optional[str] = None
    source_url: Optional[str] = None
    played_from: Optional[date] = None
    played_to: Optional[date] = None
    editors: List[str] = field(default_factory=list)
    shared_editors: bool = False
    package_editors: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    numbering_mode: QuestionNumberingMode = QuestionNumberingMode.GLOBAL
    confidence: float = 0.0
    warnings: List[str] = field(default_factory=list)
    tours: List[TourDto] = field(default_factory=list)

    @property
    def total_questions(self) -> int:
        return sum(len(t.all_questions) for t in self.tours)


@dataclass
class ImportJobRecord:
    id: str
    owner_id: str
    input_file_name: str
    input_file_path: str
    input_file_size_bytes: int
    status: ImportJobStatus = ImportJobStatus.QUEUED
    current_step: Optional[ImportStep] = None
    progress: int = 0
    attempts: int = 0
    next_retry_at: Optional[datetime] = None
    converted_file_path: Optional[str] = None
    package_id: Optional[int] = None
    error_message: Optional[str] = None
    error_details: Optional[str] = None
    warnings_json: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
