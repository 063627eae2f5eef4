"""
Error Handling - Exception taxonomy and per-file error policies.

Per-file failures inside the orchestrator and watcher go through
handle_error(), which logs them at the level chosen by ERROR_POLICIES and
tells the caller whether to skip the item or abort.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class IndexingError(Exception):
    """Base exception for semantic index errors."""
    pass


# --- Extraction / chunking ---

class ExtractionError(IndexingError):
    """File could not be read or its format is not supported."""
    def __init__(self, path: Path | str, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot extract {path}: {reason}")


class ChunkingError(IndexingError):
    """Chunker received input it cannot split."""
    pass


# --- Embedding ---

class EmbeddingError(IndexingError):
    """Error during embedding generation."""
    pass


class InitializationError(EmbeddingError):
    """Embedding model could not be loaded. Cached and re-raised on every call."""
    pass


class GenerationError(EmbeddingError):
    """Model loaded but inference failed or returned unusable vectors."""
    pass


# --- Vector store ---

class DatabaseError(IndexingError):
    """Error during vector store operations."""
    pass


class DatabaseConnectionError(DatabaseError):
    pass


class SchemaMismatchError(DatabaseError):
    """Existing table layout differs from the expected schema."""
    def __init__(self, table: str, detail: str):
        self.table = table
        self.detail = detail
        super().__init__(f"Schema mismatch for table '{table}': {detail}")


class TableCreationError(DatabaseError):
    pass


class TableOpenError(DatabaseError):
    pass


class RecordNotFoundError(DatabaseError):
    pass


class DatabaseIOError(DatabaseError):
    pass


# --- Search ---

class SearchError(IndexingError):
    """Search failed. Wrapped embedding/database errors are chained as __cause__."""
    pass


class EmptyQueryError(SearchError):
    def __init__(self):
        super().__init__("Search query cannot be empty")


class SearchOperationError(SearchError):
    pass


# --- Benchmark ---

class BenchmarkError(IndexingError):
    """Benchmark could not run (no sample files, or no model produced a result)."""
    pass


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Skip this item, continue processing
    ABORT = auto()          # Stop the entire pipeline


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


# Error type to policy mapping. Order matters: subclasses before bases.
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    IsADirectoryError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Expected file, got directory: {file}"
    ),
    ExtractionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Extraction failed: {file} - {error}"
    ),
    InitializationError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.ERROR,
        message_template="Embedding model unavailable for {file}: {error}"
    ),
    EmbeddingError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Embedding failed: {file} - {error}"
    ),
    SchemaMismatchError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="{error} (run repair to recreate the table)"
    ),
    DatabaseError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.ERROR,
        message_template="Vector store error for {file}: {error}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def handle_error(
    error: BaseException,
    file_path: Optional[Path | str] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.

    Args:
        error: The exception that occurred
        file_path: Path to the file being processed (if applicable)
        context: Additional context for logging

    Returns:
        The action to take (SKIP or ABORT)
    """
    policy = None
    for error_type, p in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            policy = p
            break

    if policy is None:
        policy = ErrorPolicy(
            action=ErrorAction.SKIP,
            log_level=logging.ERROR,
            message_template="Unexpected error: {file} - {error}"
        )

    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"

    logger.log(policy.log_level, message)

    return policy.action


@dataclass
class ProcessingResult:
    """Result of processing a single item."""
    success: bool
    path: Optional[Path] = None
    error: Optional[BaseException] = None
    action_taken: Optional[ErrorAction] = None

    @classmethod
    def ok(cls, path: Path) -> "ProcessingResult":
        return cls(success=True, path=path)

    @classmethod
    def failed(cls, path: Path, error: BaseException, action: ErrorAction) -> "ProcessingResult":
        return cls(success=False, path=path, error=error, action_taken=action)
