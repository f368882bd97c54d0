"""
Reader for `.qhub` archives: a zip with a `package.json` manifest and an
optional `assets/` folder. The manifest already carries the package
structure, so no heuristics are involved; problems in it are reported as
warnings and only a missing manifest or an empty tour list is fatal.
"""

from __future__ import annotations

import json
import logging
import uuid
import zipfile
from datetime import date, datetime
from pathlib import Path, PurePosixPath
from typing import BinaryIO, List, Optional, Union
from urllib.parse import urlparse

import requests
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ExtractionError
from .models import BlockDto, ParseResult, QuestionDto, QuestionNumberingMode, TourDto, TourType
from .storage import is_plain_file_name

logger = logging.getLogger(__name__)

EXPECTED_FORMAT_VERSION = "1.0"
MAX_ASSET_DOWNLOAD_BYTES = 20 * 1024 * 1024
DOWNLOAD_TIMEOUT_SECONDS = 30
DOWNLOAD_CHUNK_SIZE = 81920

_CONTENT_TYPE_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/svg+xml": ".svg",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "audio/wav": ".wav",
}

_NUMBERING_MODES = {
    "Global": QuestionNumberingMode.GLOBAL,
    "PerTour": QuestionNumberingMode.PER_TOUR,
    "Manual": QuestionNumberingMode.MANUAL,
}


# region Manifest models
class _ManifestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QhubQuestion(_ManifestModel):
    number: Optional[str] = None
    host_instructions: Optional[str] = Field(default=None, alias="hostInstructions")
    handout_text: Optional[str] = Field(default=None, alias="handoutText")
    handout_asset_file_name: Optional[str] = Field(default=None, alias="handoutAssetFileName")
    handout_asset_url: Optional[str] = Field(default=None, alias="handoutAssetUrl")
    text: Optional[str] = None
    answer: Optional[str] = None
    accepted_answers: Optional[str] = Field(default=None, alias="acceptedAnswers")
    rejected_answers: Optional[str] = Field(default=None, alias="rejectedAnswers")
    comment: Optional[str] = None
    comment_asset_file_name: Optional[str] = Field(default=None, alias="commentAssetFileName")
    comment_asset_url: Optional[str] = Field(default=None, alias="commentAssetUrl")
    source: Optional[str] = None
    authors: Optional[List[str]] = None


class QhubBlock(_ManifestModel):
    name: Optional[str] = None
    editors: Optional[List[str]] = None
    preamble: Optional[str] = None
    questions: Optional[List[QhubQuestion]] = None


class QhubTour(_ManifestModel):
    number: Optional[str] = None
    is_warmup: Optional[bool] = Field(default=None, alias="isWarmup")
    editors: Optional[List[str]] = None
    preamble: Optional[str] = None
    comment: Optional[str] = None
    questions: Optional[List[QhubQuestion]] = None
    blocks: Optional[List[QhubBlock]] = None


class QhubPackage(_ManifestModel):
    format_version: Optional[str] = Field(default=None, alias="formatVersion")
    source_url: Optional[str] = Field(default=None, alias="sourceUrl")
    title: Optional[str] = None
    description: Optional[str] = None
    preamble: Optional[str] = None
    played_from: Optional[str] = Field(default=None, alias="playedFrom")
    played_to: Optional[str] = Field(default=None, alias="playedTo")
    numbering_mode: Optional[str] = Field(default=None, alias="numberingMode")
    shared_editors: Optional[bool] = Field(default=None, alias="sharedEditors")
    editors: Optional[List[str]] = None
    tags: Optional[List[str]] = None
    tours: Optional[List[QhubTour]] = None


# endregion


class QhubExtractor:
    """
    Converts a `.qhub` archive into a `ParseResult`.

    Bundled assets are unpacked by base name into `assets_dir`. Questions may
    reference an asset by file name (looked up in `assets_dir`) or by an
    external http(s) URL, which is downloaded with a size cap and a timeout.
    """

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def extract(self, source: Union[str, Path, BinaryIO], assets_dir: Path) -> ParseResult:
        assets_dir = Path(assets_dir)
        assets_dir.mkdir(parents=True, exist_ok=True)

        try:
            with zipfile.ZipFile(source) as archive:
                package = self._read_manifest(archive)
                self._extract_assets(archive, assets_dir)
        except zipfile.BadZipFile as exc:
            raise ExtractionError("Файл пошкоджений або має невірний формат", details=str(exc)) from exc

        return self._map_package(package, assets_dir)

    def _read_manifest(self, archive: zipfile.ZipFile) -> QhubPackage:
        try:
            raw = archive.read("package.json")
        except KeyError as exc:
            raise ExtractionError("Файл package.json не знайдено в архіві .qhub") from exc

        try:
            data = json.loads(raw.decode("utf-8-sig"))
            if not isinstance(data, dict):
                raise ValueError("package.json root must be an object")
            return QhubPackage.model_validate(data)
        except (ValueError, PydanticValidationError) as exc:
            raise ExtractionError("Не вдалося прочитати package.json", details=str(exc)) from exc

    def _extract_assets(self, archive: zipfile.ZipFile, assets_dir: Path) -> None:
        for info in archive.infolist():
            if not info.filename.lower().startswith("assets/") or info.is_dir():
                continue
            file_name = PurePosixPath(info.filename).name
            if not is_plain_file_name(file_name):
                continue
            (assets_dir / file_name).write_bytes(archive.read(info))

    # region Mapping
    def _map_package(self, package: QhubPackage, assets_dir: Path) -> ParseResult:
        warnings: List[str] = []

        if not package.format_version or not package.format_version.strip():
            warnings.append("Відсутнє поле formatVersion")
        elif package.format_version != EXPECTED_FORMAT_VERSION:
            warnings.append(
                f"Невідома версія формату: {package.format_version}. Очікувалося {EXPECTED_FORMAT_VERSION}"
            )

        if not package.title or not package.title.strip():
            warnings.append("Назва пакету відсутня")

        if not package.tours:
            raise ExtractionError("Пакет не містить жодного туру")

        played_from = _parse_date(package.played_from, "playedFrom", warnings)
        played_to = _parse_date(package.played_to, "playedTo", warnings)

        tours = [self._map_tour(tour, i, assets_dir, warnings) for i, tour in enumerate(package.tours)]

        shared_editors = bool(package.shared_editors)
        package_editors = list(package.editors or [])
        tour_editors = _distinct(e for t in tours for e in t.editors)
        if shared_editors and not package_editors and tour_editors:
            package_editors = tour_editors
            warnings.append("SharedEditors=true, але редактори пакету не вказані. Використано редакторів турів.")

        return ParseResult(
            title=package.title,
            description=package.description,
            preamble=package.preamble,
            source_url=package.source_url,
            played_from=played_from,
            played_to=played_to,
            # with shared editors the tour lists are only a hint
            editors=[] if shared_editors else tour_editors,
            shared_editors=shared_editors,
            package_editors=package_editors,
            tags=list(package.tags or []),
            numbering_mode=_NUMBERING_MODES.get(package.numbering_mode or "", QuestionNumberingMode.GLOBAL),
            confidence=1.0,
            warnings=warnings,
            tours=tours,
        )

    def _map_tour(self, tour: QhubTour, index: int, assets_dir: Path, warnings: List[str]) -> TourDto:
        if not tour.number or not tour.number.strip():
            warnings.append(f"Тур {index + 1}: відсутній номер туру")

        number = tour.number if tour.number is not None else str(index + 1)
        if not tour.questions and not tour.blocks:
            warnings.append(f"Тур {number}: не містить запитань")

        dto = TourDto(
            number=number,
            order_index=index,
            type=TourType.WARMUP if tour.is_warmup else TourType.REGULAR,
            editors=list(tour.editors or []),
            preamble=tour.preamble,
            comment=tour.comment,
        )
        for i, block in enumerate(tour.blocks or []):
            dto.blocks.append(self._map_block(block, i, number, assets_dir, warnings))
        for i, question in enumerate(tour.questions or []):
            dto.questions.append(self._map_question(question, i, number, assets_dir, warnings))
        if dto.fold_questions_into_leading_block():
            warnings.append(f"Тур {number}: запитання поза блоками винесено в окремий блок")
        return dto

    def _map_block(
        self, block: QhubBlock, index: int, tour_number: str, assets_dir: Path, warnings: List[str]
    ) -> BlockDto:
        if not block.questions:
            warnings.append(f"Тур {tour_number}, блок {index + 1}: не містить запитань")

        dto = BlockDto(
            order_index=index,
            name=block.name,
            editors=list(block.editors or []),
            preamble=block.preamble,
        )
        context = f"{tour_number}/блок {index + 1}"
        for i, question in enumerate(block.questions or []):
            dto.questions.append(self._map_question(question, i, context, assets_dir, warnings))
        return dto

    def _map_question(
        self, question: QhubQuestion, index: int, context: str, assets_dir: Path, warnings: List[str]
    ) -> QuestionDto:
        number = question.number if question.number is not None else str(index + 1)
        label = f"Тур {context}, запитання {number}"

        if not question.number or not question.number.strip():
            warnings.append(f"{label}: відсутній номер запитання")
        if not question.text or not question.text.strip():
            warnings.append(f"{label}: текст запитання відсутній")
        if not question.answer or not question.answer.strip():
            warnings.append(f"{label}: відповідь відсутня")

        handout_asset = self._resolve_asset(
            question.handout_asset_file_name, question.handout_asset_url, assets_dir, label, "роздатка", warnings
        )
        comment_asset = self._resolve_asset(
            question.comment_asset_file_name, question.comment_asset_url, assets_dir, label, "коментар", warnings
        )

        return QuestionDto(
            number=number,
            host_instructions=_none_if_blank(question.host_instructions),
            handout_text=_none_if_blank(question.handout_text),
            handout_asset_file_name=handout_asset,
            text=question.text or "",
            answer=question.answer or "",
            accepted_answers=_none_if_blank(question.accepted_answers),
            rejected_answers=_none_if_blank(question.rejected_answers),
            comment=_none_if_blank(question.comment),
            comment_asset_file_name=comment_asset,
            source=_none_if_blank(question.source),
            authors=list(question.authors or []),
        )

    # endregion

    # region Assets
    def _resolve_asset(
        self,
        local_file_name: Optional[str],
        external_url: Optional[str],
        assets_dir: Path,
        label: str,
        asset_type: str,
        warnings: List[str],
    ) -> Optional[str]:
        if local_file_name and local_file_name.strip():
            if not is_plain_file_name(local_file_name):
                warnings.append(f"{label}: некоректна назва файлу {asset_type}: '{local_file_name}'")
            elif (assets_dir / local_file_name).is_file():
                return local_file_name
            else:
                warnings.append(f"{label}: файл {asset_type} '{local_file_name}' не знайдено в архіві")

        if external_url and external_url.strip():
            return self._download_asset(external_url, assets_dir, label, asset_type, warnings)
        return None

    def _download_asset(
        self, url: str, assets_dir: Path, label: str, asset_type: str, warnings: List[str]
    ) -> Optional[str]:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            warnings.append(f"{label}: некоректне посилання на {asset_type}: {url}")
            return None

        destination: Optional[Path] = None
        try:
            with self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT_SECONDS) as response:
                if not response.ok:
                    warnings.append(
                        f"{label}: не вдалося завантажити {asset_type} ({response.status_code}): {url}"
                    )
                    return None

                content_length = response.headers.get("Content-Length")
                if content_length and content_length.isdigit() and int(content_length) > MAX_ASSET_DOWNLOAD_BYTES:
                    size_mb = int(content_length) // 1024 // 1024
                    warnings.append(f"{label}: файл {asset_type} завеликий ({size_mb} МБ): {url}")
                    return None

                content_type = (response.headers.get("Content-Type") or "").split(";")[0].strip()
                file_name = f"dl_{uuid.uuid4().hex}{extension_from_url(url, content_type)}"
                destination = assets_dir / file_name

                total = 0
                with destination.open("wb") as f:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if not chunk:
                            continue
                        total += len(chunk)
                        if total > MAX_ASSET_DOWNLOAD_BYTES:
                            break
                        f.write(chunk)

                if total > MAX_ASSET_DOWNLOAD_BYTES:
                    destination.unlink(missing_ok=True)
                    warnings.append(f"{label}: файл {asset_type} перевищив ліміт 20 МБ: {url}")
                    return None

                logger.debug("Downloaded asset %s -> %s (%s bytes)", url, file_name, total)
                return file_name
        except requests.Timeout:
            _discard(destination)
            warnings.append(f"{label}: таймаут завантаження {asset_type}: {url}")
            return None
        except requests.RequestException as exc:
            _discard(destination)
            warnings.append(f"{label}: помилка завантаження {asset_type}: {url} ({exc})")
            return None
        except OSError:
            _discard(destination)
            logger.warning("Failed to download asset %s", url, exc_info=True)
            warnings.append(f"{label}: помилка завантаження {asset_type}: {url}")
            return None

    # endregion


def extension_from_url(url: str, content_type: Optional[str]) -> str:
    """Extension from the URL path (at most 5 chars with the dot), else from the content type."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix and len(suffix) <= 5:
        return suffix
    return _CONTENT_TYPE_EXTENSIONS.get(content_type or "", ".bin")


def _parse_date(value: Optional[str], field_name: str, warnings: List[str]) -> Optional[date]:
    if not value or not value.strip():
        return None
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        warnings.append(f"Некоректний формат дати {field_name}: '{value}'. Очікувався YYYY-MM-DD.")
        return None


def _none_if_blank(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value


def _distinct(values) -> List[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _discard(path: Optional[Path]) -> None:
    if path is not None:
        path.unlink(missing_ok=True)
