"""
Watcher - Keep the index in step with live filesystem changes.

watchdog delivers events on its own observer thread. They are converted
to FsEvent values and handed to the asyncio loop with
call_soon_threadsafe, so the queue preserves arrival order. A single
SyncPipeline task consumes the queue until the watcher is stopped.

Event kind → action:
  CREATE, MODIFY_CONTENT, RENAME_TO, RENAME_BOTH  → UPSERT
  REMOVE, RENAME_FROM                             → DELETE
  anything else                                   → IGNORE (logged)
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional, Tuple

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CLOSED_NO_WRITE,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    EVENT_TYPE_OPENED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from .config import IndexerConfig, get_config
from .errors import DatabaseError, EmbeddingError, ExtractionError, RecordNotFoundError, handle_error
from .models import ContentType
from .scanner import Scanner

if TYPE_CHECKING:
    from .orchestrator import Orchestrator


logger = logging.getLogger(__name__)


class EventKind(Enum):
    """Filesystem notification kinds, independent of the watch backend."""
    CREATE = "create"
    MODIFY_CONTENT = "modify_content"
    MODIFY_METADATA = "modify_metadata"   # touched, bytes unchanged (open/close)
    RENAME_TO = "rename_to"        # path is the new name
    RENAME_FROM = "rename_from"    # path is the old name
    RENAME_BOTH = "rename_both"    # both names in one event
    REMOVE = "remove"
    OTHER = "other"


class SyncAction(Enum):
    UPSERT = "upsert"
    DELETE = "delete"
    IGNORE = "ignore"


class SyncOutcome(Enum):
    UPSERTED = "upserted"
    DELETED = "deleted"
    SKIPPED = "skipped"      # irrelevant path, empty text, or ignored event
    FAILED = "failed"        # existing rows left untouched


_ACTIONS = {
    EventKind.CREATE: SyncAction.UPSERT,
    EventKind.MODIFY_CONTENT: SyncAction.UPSERT,
    EventKind.RENAME_TO: SyncAction.UPSERT,
    EventKind.RENAME_BOTH: SyncAction.UPSERT,
    EventKind.REMOVE: SyncAction.DELETE,
    EventKind.RENAME_FROM: SyncAction.DELETE,
}


def action_for(kind: EventKind) -> SyncAction:
    return _ACTIONS.get(kind, SyncAction.IGNORE)


@dataclass(frozen=True)
class FsEvent:
    """A filesystem change: what happened and to which paths."""
    kind: EventKind
    paths: Tuple[Path, ...]

    @classmethod
    def of(cls, kind: EventKind, *paths: Path | str) -> "FsEvent":
        return cls(kind, tuple(Path(p) for p in paths))


# Reads, including our own extraction reads, arrive as open/close pairs
_ACCESS_EVENTS = {EVENT_TYPE_OPENED, EVENT_TYPE_CLOSED, EVENT_TYPE_CLOSED_NO_WRITE}


def events_from_watchdog(event: FileSystemEvent) -> List[FsEvent]:
    """
    Translate one watchdog event.

    A move becomes RENAME_FROM(src) followed by RENAME_TO(dest) so the old
    path is deleted before the new one is indexed. Directory events are
    dropped; their files report their own events.
    """
    if event.is_directory:
        return []

    src = Path(os.fsdecode(event.src_path))
    if event.event_type == EVENT_TYPE_CREATED:
        return [FsEvent.of(EventKind.CREATE, src)]
    if event.event_type == EVENT_TYPE_MODIFIED:
        return [FsEvent.of(EventKind.MODIFY_CONTENT, src)]
    if event.event_type == EVENT_TYPE_DELETED:
        return [FsEvent.of(EventKind.REMOVE, src)]
    if event.event_type == EVENT_TYPE_MOVED:
        dest = Path(os.fsdecode(event.dest_path))
        return [FsEvent.of(EventKind.RENAME_FROM, src), FsEvent.of(EventKind.RENAME_TO, dest)]
    if event.event_type in _ACCESS_EVENTS:
        return [FsEvent.of(EventKind.MODIFY_METADATA, src)]
    return [FsEvent.of(EventKind.OTHER, src)]


class _EventHandler(FileSystemEventHandler):
    def __init__(self, watcher: "Watcher"):
        self.watcher = watcher

    def on_any_event(self, event: FileSystemEvent):
        for fs_event in events_from_watchdog(event):
            self.watcher.publish(fs_event)


class Watcher:
    """
    Recursive watchdog observer feeding an asyncio.Queue.

    stop() enqueues None, which tells the consumer the channel is closed.
    """

    def __init__(self, config: IndexerConfig | None = None):
        self.config = config or get_config()
        self.queue: asyncio.Queue[Optional[FsEvent]] = asyncio.Queue()
        self._observer = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self, roots: List[Path] | None = None):
        """
        Start watching directories. Must be called from the event loop
        that will consume the queue.
        """
        roots = roots or self.config.roots
        self._loop = asyncio.get_running_loop()

        self._observer = Observer()
        handler = _EventHandler(self)

        for root in roots:
            if Path(root).is_dir():
                self._observer.schedule(handler, str(root), recursive=True)
                logger.info(f"Watching: {root}")
            else:
                logger.warning(f"Watch root not found: {root}")

        self._running = True
        self._observer.start()
        logger.info("File watcher started")

    def publish(self, event: Optional[FsEvent]):
        """Hand an event to the loop. Safe to call from any thread."""
        if self._loop is None or self._loop.is_closed():
            logger.debug(f"Dropping event with no running loop: {event}")
            return
        self._loop.call_soon_threadsafe(self.queue.put_nowait, event)

    def stop(self):
        """Stop watching and close the channel."""
        if not self._running:
            return
        self._running = False

        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=2)
            self._observer = None

        self.publish(None)
        logger.info("File watcher stopped")


class SyncPipeline:
    """
    Applies filesystem events to the index through the orchestrator's
    single-path operations.

    A failed extraction or embedding leaves the existing rows for that
    path in place; only DELETE events remove rows.
    """

    def __init__(self, orchestrator: "Orchestrator", roots: List[Path] | None = None):
        self.orchestrator = orchestrator
        self.roots = [Path(r) for r in (roots or orchestrator.config.roots)]
        self._scanner = Scanner(orchestrator.config)

    def is_relevant(self, path: Path) -> bool:
        if self.orchestrator.extractor.classify(path) is ContentType.UNSUPPORTED:
            return False
        root = next((r for r in self.roots if path.is_relative_to(r)), None)
        return not self._scanner.is_excluded(path, root)

    async def run(self, queue: "asyncio.Queue[Optional[FsEvent]]"):
        """Consume events until the channel is closed."""
        logger.info("Sync pipeline started")
        while True:
            event = await queue.get()
            if event is None:
                break
            try:
                await self.handle_event(event)
            except Exception as e:
                handle_error(e, event.paths[0] if event.paths else None, "sync")
        logger.info("Sync pipeline stopped")

    async def handle_event(self, event: FsEvent) -> List[Tuple[Path, SyncOutcome]]:
        action = action_for(event.kind)
        if action is SyncAction.IGNORE:
            logger.debug(f"Ignoring {event.kind.value} event for {[str(p) for p in event.paths]}")
            return [(path, SyncOutcome.SKIPPED) for path in event.paths]

        outcomes = []
        for path in event.paths:
            if not self.is_relevant(path):
                logger.debug(f"Skipping irrelevant path {path}")
                outcomes.append((path, SyncOutcome.SKIPPED))
            elif action is SyncAction.UPSERT:
                outcomes.append((path, await self._upsert(path)))
            else:
                outcomes.append((path, await self._delete(path)))
        return outcomes

    async def _upsert(self, path: Path) -> SyncOutcome:
        if not path.is_file():
            logger.debug(f"{path} no longer exists, nothing to upsert")
            return SyncOutcome.SKIPPED

        orchestrator = self.orchestrator
        content_type = orchestrator.extractor.classify(path)
        try:
            if content_type is ContentType.IMAGE:
                await orchestrator.run_blocking(orchestrator.index_image, path)
                logger.info(f"Re-indexed image {path}")
                return SyncOutcome.UPSERTED

            doc = await orchestrator.run_blocking(orchestrator.prepare_text, path)
            if doc is None:
                logger.warning(f"No text extracted from {path}, nothing to index")
                return SyncOutcome.SKIPPED
            await orchestrator.run_blocking(orchestrator.write_document, doc)
        except (ExtractionError, EmbeddingError) as e:
            logger.warning(f"Skipping update for {path}, keeping existing index entry: {e}")
            return SyncOutcome.FAILED
        except DatabaseError as e:
            logger.error(f"Vector store update failed for {path}: {e}")
            return SyncOutcome.FAILED

        logger.info(f"Re-indexed {path} ({len(doc.embeddings)} chunks, {doc.table.value})")
        return SyncOutcome.UPSERTED

    async def _delete(self, path: Path) -> SyncOutcome:
        try:
            await self.orchestrator.run_blocking(self.orchestrator.remove_path, path)
        except RecordNotFoundError:
            logger.warning(f"{path} was deleted but was not in the index")
            return SyncOutcome.SKIPPED
        except DatabaseError as e:
            logger.error(f"Failed to remove {path} from the index: {e}")
            return SyncOutcome.FAILED
        logger.info(f"Removed {path} from the index")
        return SyncOutcome.DELETED
