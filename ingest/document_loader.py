"""
Knowledge document loader.

Reads dealership documents (policies, financing, warranty, FAQs) from
text, markdown, PDF or JSON files.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from pypdf import PdfReader

from funnel.states import DocumentCategory, parse_enum

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}


@dataclass
class DocumentRecord:
    """A knowledge document ready to be stored and embedded."""
    title: str
    content: str
    category: str = DocumentCategory.GENERAL.value
    file_name: Optional[str] = None


class DocumentLoader:
    """
    Loads knowledge documents.

    Supports:
    - ``.txt`` / ``.md`` files, titled by the first markdown heading or the file stem
    - ``.pdf`` files, one document per file
    - ``.json`` files holding a list of ``{"title", "content", "category"}`` objects

    The category of a file document is taken from its parent directory name
    when that name is a known category, otherwise ``general``.
    """

    def load_directory(self, directory: Union[str, Path]) -> List[DocumentRecord]:
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Document directory not found: {directory}")

        records: List[DocumentRecord] = []
        for path in sorted(directory.rglob("*")):
            if not path.is_file():
                continue
            try:
                records.extend(self.load_file(path))
            except ValueError as e:
                logger.warning(f"Skipping {path}: {e}")
        logger.info(f"Loaded {len(records)} documents from {directory}")
        return records

    def load_file(self, file_path: Union[str, Path]) -> List[DocumentRecord]:
        path = Path(file_path)
        suffix = path.suffix.lower()

        if suffix == ".json":
            return self.load_json(path)
        if suffix in TEXT_SUFFIXES:
            content = path.read_text(encoding="utf-8")
        elif suffix == ".pdf":
            content = self._read_pdf(path)
        else:
            raise ValueError(f"unsupported format {suffix}")

        content = content.strip()
        if not content:
            raise ValueError("empty document")

        return [DocumentRecord(
            title=self._title_for(path, content),
            content=content,
            category=self._category_for(path),
            file_name=path.name,
        )]

    def load_json(self, file_path: Union[str, Path]) -> List[DocumentRecord]:
        path = Path(file_path)
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)

        if isinstance(data, dict):
            data = data.get("documents", [data])

        records = []
        for item in data:
            title = (item.get("title") or "").strip()
            content = (item.get("content") or "").strip()
            if not title or not content:
                logger.warning(f"Skipping document without title or content in {path.name}")
                continue
            category = parse_enum(DocumentCategory, item.get("category")) or DocumentCategory.GENERAL
            records.append(DocumentRecord(
                title=title,
                content=content,
                category=category.value,
                file_name=item.get("file_name") or path.name,
            ))
        return records

    @staticmethod
    def _read_pdf(path: Path) -> str:
        reader = PdfReader(str(path))
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n\n".join(p.strip() for p in pages if p.strip())

    @staticmethod
    def _title_for(path: Path, content: str) -> str:
        first_line = content.splitlines()[0].strip()
        if first_line.startswith("#"):
            return first_line.lstrip("#").strip() or path.stem
        return path.stem.replace("_", " ").replace("-", " ").strip().capitalize()

    @staticmethod
    def _category_for(path: Path) -> str:
        category = parse_enum(DocumentCategory, path.parent.name)
        return (category or DocumentCategory.GENERAL).value
