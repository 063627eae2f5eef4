"""
Vector Store - LanceDB tables for document chunks and images.

Three tables live in one LanceDB directory:
  documents           : general text chunks
  alternate_documents : alternate-script text chunks
  images              : one row per image

LanceDB has no native per-key replace, so upsert is delete-by-path
followed by an append. Writes for one path are serialised by PathLocks;
the pair is still not transactional and a crash in between can leave a
document absent or partially written until it is re-indexed.
"""

import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import lancedb
import numpy as np
import pyarrow as pa

from .config import IndexerConfig, get_config
from .errors import (
    DatabaseConnectionError,
    DatabaseIOError,
    SchemaMismatchError,
    TableCreationError,
    TableOpenError,
)
from .models import TableKind


logger = logging.getLogger(__name__)

_VECTOR_COLUMN = "embedding"


def text_schema(dim: int) -> pa.Schema:
    return pa.schema([
        pa.field("file_path",     pa.string(), nullable=False),
        pa.field("content_hash",  pa.string(), nullable=False),
        pa.field("chunk_id",      pa.int32(), nullable=False),
        pa.field("embedding",     pa.list_(pa.float32(), dim), nullable=False),
        pa.field("last_modified", pa.timestamp("s"), nullable=False),
    ])


def image_schema(dim: int) -> pa.Schema:
    return pa.schema([
        pa.field("file_path",      pa.string(), nullable=False),
        pa.field("file_hash",      pa.string(), nullable=False),
        pa.field("embedding",      pa.list_(pa.float32(), dim), nullable=False),
        pa.field("last_modified",  pa.timestamp("s"), nullable=False),
        pa.field("width",          pa.int32(), nullable=True),
        pa.field("height",         pa.int32(), nullable=True),
        pa.field("thumbnail_path", pa.string(), nullable=True),
    ])


def _types_match(actual: pa.DataType, expected: pa.DataType) -> bool:
    """Structural type comparison: vector width and element type, time unit ignored."""
    if pa.types.is_fixed_size_list(expected):
        return (
            pa.types.is_fixed_size_list(actual)
            and actual.list_size == expected.list_size
            and actual.value_type == expected.value_type
        )
    if pa.types.is_timestamp(expected):
        return pa.types.is_timestamp(actual)
    if pa.types.is_string(expected):
        return pa.types.is_string(actual) or pa.types.is_large_string(actual)
    return actual == expected


def schema_mismatch(actual: pa.Schema, expected: pa.Schema) -> Optional[str]:
    """Describe the first difference between two schemas, or None if compatible."""
    if len(actual) != len(expected):
        return f"expected {len(expected)} fields, found {len(actual)}"
    for got, want in zip(actual, expected):
        if got.name != want.name:
            return f"expected field '{want.name}', found '{got.name}'"
        if not _types_match(got.type, want.type):
            return f"field '{want.name}' has type {got.type}, expected {want.type}"
    return None


def _sql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def path_predicate(path: str) -> str:
    return f"file_path = {_sql_quote(path)}"


def epoch_seconds(value: Any) -> int:
    """Convert a timestamp cell (datetime or number) to epoch seconds."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if value is None:
        return 0
    return int(value)


def _as_list(vector: np.ndarray | Sequence[float]) -> List[float]:
    return np.asarray(vector, dtype=np.float32).tolist()


class PathLocks:
    """
    Sharded lock keyed by path.

    Orchestrator and watcher can both write the same path; holding the
    shard lock across delete+insert prevents interleaved upserts.
    """

    def __init__(self, shards: int = 64):
        self._locks = [threading.Lock() for _ in range(shards)]

    def lock_for(self, path: str) -> threading.Lock:
        return self._locks[hash(path) % len(self._locks)]


class VectorTable:
    """Handle to one LanceDB table plus the store's path locks."""

    def __init__(self, kind: TableKind, table: Any, schema: pa.Schema, locks: PathLocks):
        self.kind = kind
        self.name = kind.value
        self._table = table
        self._schema = schema
        self._locks = locks
        self.dimension = schema.field(_VECTOR_COLUMN).type.list_size

    # --- Writes ---

    def upsert(self, path: str, content_hash: str, embeddings: Sequence[np.ndarray]) -> int:
        """
        Replace every row for path with one row per embedding.

        chunk_id is the index in embeddings. An empty list is skipped (no
        delete either). Returns the number of rows written.
        """
        path = str(path)
        if len(embeddings) == 0:
            logger.warning(f"No embeddings for {path}, skipping upsert into {self.name}")
            return 0

        now = int(time.time())
        rows = [
            {
                "file_path": path,
                "content_hash": content_hash,
                "chunk_id": i,
                "embedding": self._checked(vector),
                "last_modified": now,
            }
            for i, vector in enumerate(embeddings)
        ]
        self._replace(path, rows)
        logger.debug(f"Upserted {len(rows)} rows for {path} into {self.name}")
        return len(rows)

    def upsert_image(
        self,
        path: str,
        file_hash: str,
        embedding: np.ndarray,
        width: Optional[int] = None,
        height: Optional[int] = None,
        thumbnail_path: Optional[str] = None,
    ) -> int:
        path = str(path)
        row = {
            "file_path": path,
            "file_hash": file_hash,
            "embedding": self._checked(embedding),
            "last_modified": int(time.time()),
            "width": width,
            "height": height,
            "thumbnail_path": thumbnail_path,
        }
        self._replace(path, [row])
        logger.debug(f"Upserted image {path} into {self.name}")
        return 1

    def delete(self, path: str) -> None:
        """Remove all rows for path. Deleting a path that is not present succeeds."""
        path = str(path)
        with self._locks.lock_for(path):
            try:
                self._table.delete(path_predicate(path))
            except Exception as e:
                raise DatabaseIOError(f"Delete of {path} from {self.name} failed: {e}") from e

    def clear(self) -> None:
        try:
            self._table.delete("true")
        except Exception as e:
            raise DatabaseIOError(f"Clearing {self.name} failed: {e}") from e
        logger.info(f"Cleared table {self.name}")

    # --- Reads ---

    def nearest(self, vector: np.ndarray | Sequence[float], limit: int) -> List[Dict[str, Any]]:
        """
        Raw nearest-neighbour query, ordered by cosine distance ascending.

        Rows are dicts with the table's columns plus "_distance" (0..2).
        """
        if limit <= 0:
            return []
        try:
            if self._table.count_rows() == 0:
                return []
            return (
                self._table.search(_as_list(vector), vector_column_name=_VECTOR_COLUMN)
                .metric("cosine")
                .limit(limit)
                .to_list()
            )
        except Exception as e:
            raise DatabaseIOError(f"Vector search on {self.name} failed: {e}") from e

    def count(self, path: Optional[str] = None) -> int:
        try:
            if path is None:
                return self._table.count_rows()
            return self._table.count_rows(path_predicate(str(path)))
        except Exception as e:
            raise DatabaseIOError(f"Counting rows in {self.name} failed: {e}") from e

    def contains(self, path: str) -> bool:
        return self.count(path) > 0

    def rows_for(self, path: str) -> List[Dict[str, Any]]:
        """All rows for path ordered by chunk (admin/diagnostics)."""
        path = str(path)
        rows = [
            row for row in self._table.to_arrow().to_pylist()
            if row["file_path"] == path
        ]
        return sorted(rows, key=lambda r: r.get("chunk_id", 0))

    def paths(self) -> set[str]:
        return set(self._table.to_arrow().column("file_path").to_pylist())

    # --- Internals ---

    def _checked(self, vector: np.ndarray | Sequence[float]) -> List[float]:
        values = _as_list(vector)
        if len(values) != self.dimension:
            raise DatabaseIOError(
                f"Vector of width {len(values)} does not fit {self.name} (dim={self.dimension})"
            )
        return values

    def _replace(self, path: str, rows: List[Dict[str, Any]]) -> None:
        data = pa.Table.from_pylist(rows, schema=self._schema)
        with self._locks.lock_for(path):
            try:
                self._table.delete(path_predicate(path))
                self._table.add(data)
            except Exception as e:
                raise DatabaseIOError(f"Upsert of {path} into {self.name} failed: {e}") from e


class VectorStore:
    """
    Owner of the LanceDB connection and the three table handles.

    Tables are opened (or created) on first use and cached. Opening an
    existing table whose schema differs raises SchemaMismatchError; the
    fix is an explicit drop (see repair).
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self.db_path: Path = self.config.db_path
        self._db = None
        self._tables: Dict[TableKind, VectorTable] = {}
        self._lock = threading.Lock()
        self.locks = PathLocks()

    def schema_for(self, kind: TableKind) -> pa.Schema:
        if kind is TableKind.DOCUMENTS:
            return text_schema(self.config.text_dim)
        if kind is TableKind.ALTERNATE_DOCUMENTS:
            return text_schema(self.config.alternate_dim)
        return image_schema(self.config.image_dim)

    def connect(self):
        """Open the LanceDB directory, creating it if absent."""
        if self._db is None:
            try:
                self.db_path.mkdir(parents=True, exist_ok=True)
                self._db = lancedb.connect(str(self.db_path))
            except Exception as e:
                raise DatabaseConnectionError(
                    f"Cannot open vector store at {self.db_path}: {e}"
                ) from e
            logger.info(f"Connected to vector store at {self.db_path}")
        return self._db

    def table_names(self) -> List[str]:
        """Names of all tables, following list_tables pagination."""
        db = self.connect()
        names: List[str] = []
        token = None
        try:
            while True:
                page = db.list_tables(page_token=token)
                names.extend(page.tables)
                token = page.page_token
                if not token:
                    break
        except Exception as e:
            raise DatabaseIOError(f"Cannot list tables in {self.db_path}: {e}") from e
        return names

    def open_or_create(self, kind: TableKind) -> VectorTable:
        db = self.connect()
        expected = self.schema_for(kind)

        if kind.value in self.table_names():
            try:
                table = db.open_table(kind.value)
                actual = table.schema
            except Exception as e:
                raise TableOpenError(f"Cannot open table '{kind.value}': {e}") from e
            if problem := schema_mismatch(actual, expected):
                raise SchemaMismatchError(kind.value, problem)
        else:
            try:
                table = db.create_table(kind.value, schema=expected)
            except Exception as e:
                raise TableCreationError(f"Cannot create table '{kind.value}': {e}") from e
            logger.info(f"Created table {kind.value}")

        return VectorTable(kind, table, expected, self.locks)

    def table(self, kind: TableKind) -> VectorTable:
        with self._lock:
            if kind not in self._tables:
                self._tables[kind] = self.open_or_create(kind)
            return self._tables[kind]

    def force_drop(self, kind: TableKind) -> bool:
        """Drop a table through the API. Returns False if it did not exist."""
        with self._lock:
            self._tables.pop(kind, None)
            db = self.connect()
            if kind.value not in self.table_names():
                return False
            try:
                db.drop_table(kind.value)
            except Exception as e:
                raise DatabaseIOError(f"Dropping table '{kind.value}' failed: {e}") from e
        logger.info(f"Dropped table {kind.value}")
        return True

    def drop_all(self) -> List[str]:
        return [kind.value for kind in TableKind if self.force_drop(kind)]

    def clear_all(self) -> None:
        for kind in TableKind:
            self.table(kind).clear()

    def stats(self) -> Dict[str, int]:
        text = self.table(TableKind.DOCUMENTS).count()
        alternate = self.table(TableKind.ALTERNATE_DOCUMENTS).count()
        images = self.table(TableKind.IMAGES).count()
        return {
            "text_count": text,
            "alternate_count": alternate,
            "image_count": images,
            "total_count": text + alternate + images,
        }

    def close(self):
        with self._lock:
            self._tables.clear()
            self._db = None
