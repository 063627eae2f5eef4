"""
Data Models - Type definitions for the indexing and search pipeline.

These dataclasses represent the data flowing between the extractor,
embedder, vector store, search engine and orchestrator.
"""

import threading
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Protocol

import numpy as np


class ContentType(Enum):
    """Content category of a file, decided by extension."""
    TEXT = "text"
    IMAGE = "image"
    UNSUPPORTED = "unsupported"


class Language(Enum):
    """Language route of an extracted document."""
    PRIMARY = "primary"                    # English
    ALTERNATE_SCRIPT = "alternate_script"  # Ethiopic script (Amharic, Tigrinya...)
    OTHER = "other"


class TableKind(Enum):
    """The three vector store tables."""
    DOCUMENTS = "documents"
    ALTERNATE_DOCUMENTS = "alternate_documents"
    IMAGES = "images"


TEXT_TABLES = (TableKind.DOCUMENTS, TableKind.ALTERNATE_DOCUMENTS)


# Closed routing table: every Language lands in exactly one text table
LANGUAGE_ROUTES: dict[Language, TableKind] = {
    Language.PRIMARY: TableKind.DOCUMENTS,
    Language.OTHER: TableKind.DOCUMENTS,
    Language.ALTERNATE_SCRIPT: TableKind.ALTERNATE_DOCUMENTS,
}


def route_for(language: Language) -> TableKind:
    return LANGUAGE_ROUTES[language]


class SearchContentType(Enum):
    """Which modalities a search covers."""
    ALL = "all"
    TEXT_ONLY = "text"
    IMAGE_ONLY = "image"

    @classmethod
    def from_str(cls, value: Optional[str]) -> "SearchContentType":
        """Map "text" / "image" / "all" (case-insensitive) to a filter. None means ALL."""
        if value is None:
            return cls.ALL
        normalized = value.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown content type: {value!r}")

    @property
    def includes_text(self) -> bool:
        return self in (SearchContentType.ALL, SearchContentType.TEXT_ONLY)

    @property
    def includes_images(self) -> bool:
        return self in (SearchContentType.ALL, SearchContentType.IMAGE_ONLY)


@dataclass
class ExtractedText:
    """Extractor output for a text-classified file."""
    path: Path
    text: str
    language: Language
    truncated: bool = False


@dataclass
class PreparedDocument:
    """
    A text file that has been extracted and embedded during the scan,
    waiting to be written to its language table.
    """
    path: Path
    content_hash: str
    embeddings: List[np.ndarray]
    table: TableKind


@dataclass
class ImageData:
    """Image-specific payload on a search result."""
    width: Optional[int] = None
    height: Optional[int] = None
    thumbnail_path: Optional[str] = None


@dataclass
class SearchResult:
    """One ranked file returned by the search engine."""
    file_path: str
    score: float
    content_hash: str
    last_modified: int
    content_type: ContentType
    image_data: Optional[ImageData] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["content_type"] = self.content_type.value
        return data


@dataclass
class RunStats:
    """Statistics from an indexing run."""
    elapsed_seconds: float = 0.0
    files_processed: int = 0
    files_indexed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    text_files_processed: int = 0
    text_files_indexed: int = 0
    text_files_failed: int = 0
    image_files_processed: int = 0
    image_files_indexed: int = 0
    image_files_failed: int = 0
    indexed_files: List[str] = field(default_factory=list)
    failed_files: List[str] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> int:
        return int(self.elapsed_seconds * 1000)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["elapsed_ms"] = self.elapsed_ms
        return data

    def __str__(self) -> str:
        return (
            f"Indexed {self.files_indexed}/{self.files_processed} files "
            f"(text {self.text_files_indexed}/{self.text_files_processed}, "
            f"images {self.image_files_indexed}/{self.image_files_processed}, "
            f"{self.files_skipped} skipped, "
            f"{self.files_failed} failed) "
            f"in {self.elapsed_seconds:.1f}s"
        )


class RunStatsStore(Protocol):
    """Holder of the most recent RunStats. Last writer wins."""

    def get(self) -> Optional[RunStats]: ...

    def set(self, stats: RunStats) -> None: ...

    def clear(self) -> None: ...


class InMemoryRunStatsStore:
    """Default RunStatsStore, safe to share across threads."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats: Optional[RunStats] = None

    def get(self) -> Optional[RunStats]:
        with self._lock:
            return self._stats

    def set(self, stats: RunStats) -> None:
        with self._lock:
            self._stats = stats

    def clear(self) -> None:
        with self._lock:
            self._stats = None
