from __future__ import annotations

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import create_engine, insert, select
from sqlalchemy.orm import Session, sessionmaker

from .errors import DatabaseImportError
from .models import PackageStatus, ParseResult, QuestionDto
from .schema import (
    AuthorModel,
    Base,
    BlockModel,
    PackageModel,
    QuestionModel,
    TagModel,
    TourModel,
    block_editors,
    package_editors,
    package_tags,
    question_authors,
    tour_editors,
)
from .storage import LocalImportStorage

logger = logging.getLogger(__name__)

DEFAULT_PACKAGE_TITLE = "Імпортований пакет"
MAX_SHORT_FIELD_LENGTH = 1000

_TRAILING_CITY = re.compile(r"\s*\([^)]+\)\s*$")
_FORBIDDEN_NAME_CHARS = set(':?!"«»')


class PackageDbImporter:
    """
    Persists a `ParseResult` as a package aggregate (package, tours, blocks,
    questions, authors, tags) in a single transaction. Any failure rolls the
    whole package back.
    """

    def __init__(self, database_url: str, storage: LocalImportStorage):
        self.engine = create_engine(database_url, future=True)
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False, future=True)
        self.storage = storage

    def _session(self) -> Session:
        return self.SessionLocal()

    def import_package(self, result: ParseResult, owner_id: str, job_id: str, assets_dir: Path) -> int:
        with self._session() as session:
            try:
                logger.info("Importing package: %s (job %s)", result.title, job_id)
                package_id = self._write_package(session, result, owner_id, job_id, Path(assets_dir))
                session.commit()
            except Exception as exc:  # noqa: BLE001
                session.rollback()
                logger.exception("Failed to import package for job %s", job_id)
                raise DatabaseImportError("Не вдалося зберегти пакет в базу даних", details=repr(exc)) from exc

        logger.info(
            "Package imported: id=%s, tours=%s, questions=%s",
            package_id,
            len(result.tours),
            result.total_questions,
        )
        return package_id

    def _write_package(
        self, session: Session, result: ParseResult, owner_id: str, job_id: str, assets_dir: Path
    ) -> int:
        authors = _AuthorResolver(session)

        package = PackageModel(
            title=result.title or DEFAULT_PACKAGE_TITLE,
            description=result.description,
            preamble=result.preamble,
            source_url=result.source_url,
            status=PackageStatus.DRAFT,
            owner_id=owner_id,
            total_questions=result.total_questions,
            numbering_mode=result.numbering_mode,
            shared_editors=result.shared_editors,
            played_from=result.played_from,
            played_to=result.played_to,
            created_at=datetime.utcnow(),
        )
        session.add(package)
        session.flush()

        editors = result.package_editors if result.shared_editors else result.editors
        _link(session, package_editors, "package_id", package.id, authors.resolve(editors))
        _link(session, package_tags, "package_id", package.id, self._resolve_tags(session, result.tags), "tag_id")

        for tour_dto in result.tours:
            tour = TourModel(
                package_id=package.id,
                number=tour_dto.number,
                order_index=tour_dto.order_index,
                type=tour_dto.type,
                preamble=tour_dto.preamble,
                comment=tour_dto.comment,
            )
            session.add(tour)
            session.flush()
            _link(session, tour_editors, "tour_id", tour.id, authors.resolve(tour_dto.editors))

            if tour_dto.blocks:
                # one counter across all blocks of the tour
                order_index = 0
                for block_dto in tour_dto.blocks:
                    block = BlockModel(
                        tour_id=tour.id,
                        name=block_dto.name,
                        order_index=block_dto.order_index,
                        preamble=block_dto.preamble,
                    )
                    session.add(block)
                    session.flush()
                    _link(session, block_editors, "block_id", block.id, authors.resolve(block_dto.editors))
                    for question_dto in block_dto.questions:
                        self._write_question(
                            session, question_dto, order_index, tour.id, block.id, job_id, assets_dir, authors
                        )
                        order_index += 1
            else:
                for order_index, question_dto in enumerate(tour_dto.questions):
                    self._write_question(session, question_dto, order_index, tour.id, None, job_id, assets_dir, authors)

        return package.id

    def _write_question(
        self,
        session: Session,
        dto: QuestionDto,
        order_index: int,
        tour_id: int,
        block_id: Optional[int],
        job_id: str,
        assets_dir: Path,
        authors: "_AuthorResolver",
    ) -> None:
        question = QuestionModel(
            tour_id=tour_id,
            block_id=block_id,
            order_index=order_index,
            number=dto.number,
            host_instructions=truncate(dto.host_instructions, MAX_SHORT_FIELD_LENGTH),
            text=dto.text,
            handout_text=dto.handout_text,
            handout_url=self._promote(dto.handout_asset_file_name, job_id, assets_dir),
            answer=truncate(dto.answer, MAX_SHORT_FIELD_LENGTH) or "",
            accepted_answers=truncate(dto.accepted_answers, MAX_SHORT_FIELD_LENGTH),
            rejected_answers=truncate(dto.rejected_answers, MAX_SHORT_FIELD_LENGTH),
            comment=dto.comment,
            comment_attachment_url=self._promote(dto.comment_asset_file_name, job_id, assets_dir),
            source=dto.source,
        )
        session.add(question)
        session.flush()
        _link(session, question_authors, "question_id", question.id, authors.resolve(dto.authors))

    def _promote(self, file_name: Optional[str], job_id: str, assets_dir: Path) -> Optional[str]:
        if not file_name:
            return None
        return self.storage.promote_asset(assets_dir, file_name, job_id)

    def _resolve_tags(self, session: Session, names: Iterable[str]) -> List[int]:
        tag_ids: List[int] = []
        for raw in names:
            name = (raw or "").strip()
            if not name:
                continue
            key = name.casefold()
            tag = session.execute(select(TagModel).where(TagModel.normalized_name == key)).scalar_one_or_none()
            if tag is None:
                tag = TagModel(name=name, normalized_name=key)
                session.add(tag)
                session.flush()
            if tag.id not in tag_ids:
                tag_ids.append(tag.id)
        return tag_ids


class _AuthorResolver:
    """Get-or-create for authors within one import session."""

    def __init__(self, session: Session):
        self.session = session
        self._cache: Dict[Tuple[str, str], int] = {}

    def resolve(self, names: Iterable[str]) -> List[int]:
        ids: List[int] = []
        for name in dict.fromkeys(names):
            if not name or not name.strip():
                continue
            parsed = parse_author_name(name)
            if parsed is None:
                logger.warning("Invalid author name format, skipping: %s", name)
                continue
            author_id = self._get_or_create(*parsed)
            if author_id not in ids:
                ids.append(author_id)
            logger.debug("Resolved author: %s %s", *parsed)
        return ids

    def _get_or_create(self, first_name: str, last_name: str) -> int:
        key = (first_name, last_name)
        if key in self._cache:
            return self._cache[key]
        stmt = select(AuthorModel).where(AuthorModel.first_name == first_name, AuthorModel.last_name == last_name)
        author = self.session.execute(stmt).scalar_one_or_none()
        if author is None:
            author = AuthorModel(first_name=first_name, last_name=last_name)
            self.session.add(author)
            self.session.flush()
        self._cache[key] = author.id
        return author.id


def _link(session: Session, table, owner_column: str, owner_id: int, ids: List[int], target_column: str = "author_id") -> None:
    if not ids:
        return
    session.execute(insert(table), [{owner_column: owner_id, target_column: target_id} for target_id in ids])


def parse_author_name(full_name: str) -> Optional[Tuple[str, str]]:
    """
    "Ім'я Прізвище (Київ)." -> ("Ім'я", "Прізвище"). Returns None unless the
    name is exactly two words, each starting with a letter and free of digits
    and sentence punctuation.
    """
    name = full_name.strip().rstrip(".,;")
    name = _TRAILING_CITY.sub("", name).strip().rstrip(".,;")
    parts = name.split()
    if len(parts) != 2:
        return None
    first_name, last_name = parts
    if not _is_valid_name_part(first_name) or not _is_valid_name_part(last_name):
        return None
    return first_name, last_name


def _is_valid_name_part(part: str) -> bool:
    if not part:
        return False
    if any(ch.isdigit() for ch in part):
        return False
    if any(ch in _FORBIDDEN_NAME_CHARS for ch in part):
        return False
    return part[0].isalpha()


def truncate(text: Optional[str], max_length: int) -> Optional[str]:
    if not text:
        return text
    return text if len(text) <= max_length else text[:max_length]
