from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from docling.datamodel.base_models import InputFormat
from docling.document_converter import DocumentConverter
from docling_core.types.doc import DocItemLabel
from docling_core.types.doc.document import ListItem, PictureItem, SectionHeaderItem, TableItem, TextItem

from .errors import ExtractionError
from .models import AssetReference, DocBlock, ExtractionResult

logger = logging.getLogger(__name__)


class DocumentExtractor:
    """
    Turns an uploaded document into the ordered block feed consumed by the
    parser. Implementations should be stateless and reusable.
    """

    def extract(self, path: Path, assets_dir: Path) -> ExtractionResult:
        raise NotImplementedError


class DoclingDocxExtractor(DocumentExtractor):
    """
    DOCX extractor on top of Docling's `DocumentConverter`.

    Paragraphs become blocks in reading order, with the Word list marker
    prepended for numbered lists (quiz questions are often typed as a list).
    Tables collapse into one block of `" | "`-joined rows. Pictures are written
    to `assets_dir` as PNG and emitted as asset-only blocks which the parser
    folds into the preceding paragraph.
    """

    def __init__(self):
        self.converter = DocumentConverter(allowed_formats=[InputFormat.DOCX])

    def extract(self, path: Path, assets_dir: Path) -> ExtractionResult:
        assets_dir = Path(assets_dir)
        assets_dir.mkdir(parents=True, exist_ok=True)
        try:
            result = self.converter.convert(Path(path))
            doc = result.document
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to open DOCX file %s", path, exc_info=True)
            raise ExtractionError("Файл пошкоджений або має невірний формат", details=repr(exc)) from exc

        blocks: List[DocBlock] = []
        assets: List[AssetReference] = []
        warnings: List[str] = []

        for item, _level in doc.iterate_items():
            if isinstance(item, TableItem):
                text = self._table_text(item)
                if text.strip():
                    blocks.append(DocBlock(index=len(blocks), text=text))
            elif isinstance(item, PictureItem):
                asset = self._save_picture(item, doc, assets_dir, len(assets) + 1)
                if asset is None:
                    warnings.append(f"Зображення {len(assets) + 1} не вдалося зберегти")
                    continue
                assets.append(asset)
                blocks.append(DocBlock(index=len(blocks), text="", assets=[asset]))
            elif isinstance(item, TextItem):
                block = self._text_block(item, len(blocks))
                if block.text.strip():
                    blocks.append(block)

        logger.info("Extracted %s blocks and %s images from DOCX", len(blocks), len(assets))
        return ExtractionResult(blocks=blocks, assets=assets, warnings=warnings)

    def _text_block(self, item: TextItem, index: int) -> DocBlock:
        text = item.text or ""
        if isinstance(item, ListItem) and getattr(item, "enumerated", False):
            marker = (getattr(item, "marker", "") or "").strip()
            if marker:
                text = f"{marker} {text}"

        style_id: Optional[str] = None
        heading_level: Optional[int] = None
        if isinstance(item, SectionHeaderItem):
            heading_level = item.level
            style_id = f"Heading{item.level}"
        elif item.label == DocItemLabel.TITLE:
            heading_level = 0
            style_id = "Title"

        formatting = getattr(item, "formatting", None)
        return DocBlock(
            index=index,
            text=text,
            style_id=style_id,
            is_bold=bool(formatting and formatting.bold),
            is_italic=bool(formatting and formatting.italic),
            is_heading=style_id is not None,
            heading_level=heading_level,
        )

    def _table_text(self, table: TableItem) -> str:
        lines = []
        for row in table.data.grid:
            cells = [(cell.text or "").strip() for cell in row]
            if any(cells):
                lines.append(" | ".join(cells))
        return "\n".join(lines)

    def _save_picture(self, picture: PictureItem, doc, assets_dir: Path, image_index: int) -> Optional[AssetReference]:
        image = picture.get_image(doc)
        if image is None:
            return None
        file_name = f"image_{image_index:03d}.png"
        target = assets_dir / file_name
        try:
            image.save(target, format="PNG")
        except OSError:
            logger.warning("Failed to save image %s", file_name, exc_info=True)
            return None
        return AssetReference(
            file_name=file_name,
            relative_url=f"assets/{file_name}",
            content_type="image/png",
            size_bytes=target.stat().st_size,
        )
