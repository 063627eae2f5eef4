"""
Orchestrator - Main entry point for indexing.

Pipeline for one run:
  1. SCAN: walk the roots, classify every file
  2. PREPARE: text files are extracted, routed by language and embedded
     while the walk is in progress; images are only queued
  3. WRITE: three concurrent pipelines (general text, alternate-script
     text, images) drain their queues in fixed-size batches
  4. STATS: per-pipeline outcomes are folded into RunStats, which replaces
     the last-run stats in the RunStatsStore
"""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .config import IndexerConfig, get_config
from .embedder import EmbeddingModels
from .errors import DatabaseError, ErrorAction, ProcessingResult, RecordNotFoundError, handle_error
from .extractor import Extractor
from .hasher import fingerprint, fingerprint_file
from .models import (
    TEXT_TABLES, ContentType, InMemoryRunStatsStore, PreparedDocument,
    RunStats, RunStatsStore, SearchContentType, TableKind, route_for,
)
from .scanner import Scanner
from .store import VectorStore
from .watcher import SyncPipeline, Watcher


logger = logging.getLogger(__name__)

T = TypeVar("T")


def _batches(items: Sequence[T], size: int) -> List[Sequence[T]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


class Orchestrator:
    """
    Drives files through Extractor → Chunker → Embedder → VectorStore.

    All collaborators are injected; anything omitted is built from config.
    The watcher reuses prepare_text / write_document / index_image /
    remove_path so both producers share one write path.
    """

    def __init__(
        self,
        config: Optional[IndexerConfig] = None,
        store: Optional[VectorStore] = None,
        models: Optional[EmbeddingModels] = None,
        stats_store: Optional[RunStatsStore] = None,
        extractor: Optional[Extractor] = None,
    ):
        self.config = config or get_config()
        self.store = store or VectorStore(self.config)
        self.models = models or EmbeddingModels.from_config(self.config)
        self.stats_store = stats_store or InMemoryRunStatsStore()
        self.extractor = extractor or Extractor(self.config)
        self._scanner = Scanner(self.config)
        self._executor: ThreadPoolExecutor | None = None
        self._watcher = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.config.executor_workers,
                thread_name_prefix="semindex",
            )
        return self._executor

    async def run_blocking(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking call (extraction, inference, LanceDB) on the shared pool."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get_executor(), fn, *args)

    # ------------------------------------------------------------------
    # Full runs
    # ------------------------------------------------------------------

    async def index_tree(self, root: Path) -> RunStats:
        """Index everything under root and publish the run's stats."""
        return await self._run([Path(root).expanduser().resolve()])

    async def index_roots(self, roots: Optional[List[Path]] = None) -> RunStats:
        """Index several roots as one run (default: config.roots)."""
        roots = roots or self.config.roots
        return await self._run([Path(r).expanduser().resolve() for r in roots])

    async def index_downloads(self) -> RunStats:
        return await self.index_tree(self.config.downloads_path)

    async def _run(self, roots: List[Path]) -> RunStats:
        start_time = time.monotonic()
        stats = RunStats()

        queues: Dict[TableKind, List[PreparedDocument]] = {kind: [] for kind in TEXT_TABLES}
        images: List[Path] = []

        # --- Phase 1+2: scan, embed text inline, queue images ---
        logger.info(f"Scanning {len(roots)} root(s): {', '.join(str(r) for r in roots)}")
        for root in roots:
            async for path in self._scanner.walk(root):
                content_type = self.extractor.classify(path)

                if content_type is ContentType.UNSUPPORTED:
                    stats.files_skipped += 1
                    continue

                if content_type is ContentType.IMAGE:
                    stats.image_files_processed += 1
                    images.append(path)
                    continue

                try:
                    doc = await self.run_blocking(self.prepare_text, path)
                except Exception as e:
                    if handle_error(e, path, "prepare_text") is ErrorAction.ABORT:
                        raise
                    stats.text_files_processed += 1
                    stats.text_files_failed += 1
                    stats.failed_files.append(str(path))
                    continue

                if doc is None:
                    logger.debug(f"No text in {path}, skipping")
                    stats.files_skipped += 1
                    continue

                stats.text_files_processed += 1
                queues[doc.table].append(doc)

        phase_time = time.monotonic() - start_time
        logger.info(
            f"Scan complete in {phase_time:.1f}s: "
            f"{len(queues[TableKind.DOCUMENTS])} documents, "
            f"{len(queues[TableKind.ALTERNATE_DOCUMENTS])} alternate-script documents, "
            f"{len(images)} images, {stats.files_skipped} skipped"
        )

        # --- Phase 3: three independent writers ---
        pipelines: Dict[str, tuple[Sequence[Any], Awaitable[List[ProcessingResult]]]] = {
            "documents": (
                queues[TableKind.DOCUMENTS],
                self._drain(queues[TableKind.DOCUMENTS], self.write_document, lambda d: d.path),
            ),
            "alternate_documents": (
                queues[TableKind.ALTERNATE_DOCUMENTS],
                self._drain(
                    queues[TableKind.ALTERNATE_DOCUMENTS], self.write_document, lambda d: d.path
                ),
            ),
            "images": (images, self._drain(images, self.index_image, lambda p: p)),
        }
        outcomes = await asyncio.gather(
            *(job for _, job in pipelines.values()), return_exceptions=True
        )

        # --- Phase 4: fold outcomes into stats ---
        for (name, (items, _)), outcome in zip(pipelines.items(), outcomes):
            is_image = name == "images"
            if isinstance(outcome, BaseException):
                logger.error(f"Pipeline {name} crashed, marking {len(items)} items failed: {outcome}")
                paths = [p if is_image else p.path for p in items]
                results = [ProcessingResult.failed(Path(p), outcome, ErrorAction.SKIP) for p in paths]
            else:
                results = outcome

            for result in results:
                if result.success:
                    stats.indexed_files.append(str(result.path))
                    if is_image:
                        stats.image_files_indexed += 1
                    else:
                        stats.text_files_indexed += 1
                else:
                    stats.failed_files.append(str(result.path))
                    if is_image:
                        stats.image_files_failed += 1
                    else:
                        stats.text_files_failed += 1

        stats.files_processed = stats.text_files_processed + stats.image_files_processed
        stats.files_indexed = stats.text_files_indexed + stats.image_files_indexed
        stats.files_failed = stats.text_files_failed + stats.image_files_failed
        stats.elapsed_seconds = time.monotonic() - start_time

        self.stats_store.set(stats)
        logger.info(f"Indexing complete: {stats}")
        return stats

    async def _drain(
        self,
        items: Sequence[T],
        work: Callable[[T], Any],
        path_of: Callable[[T], Path],
    ) -> List[ProcessingResult]:
        """Run work over items, batch_size at a time, each batch awaited fully."""
        results: List[ProcessingResult] = []
        for batch in _batches(items, self.config.batch_size):
            outcomes = await asyncio.gather(
                *(self.run_blocking(work, item) for item in batch),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, outcomes):
                path = path_of(item)
                if isinstance(outcome, BaseException):
                    action = handle_error(outcome, path, work.__name__)
                    if action is ErrorAction.ABORT:
                        raise outcome
                    results.append(ProcessingResult.failed(path, outcome, action))
                else:
                    results.append(ProcessingResult.ok(path))
        return results

    # ------------------------------------------------------------------
    # Single-path operations (blocking; call through run_blocking)
    # ------------------------------------------------------------------

    def prepare_text(self, path: Path) -> Optional[PreparedDocument]:
        """
        Extract, fingerprint and embed one text file.

        Returns None when the file has no text. Raises ExtractionError or
        EmbeddingError on failure.
        """
        extracted = self.extractor.extract(path)
        text = extracted.text.strip()
        if not text:
            return None

        table = route_for(extracted.language)
        embedder = self.models.alternate if table is TableKind.ALTERNATE_DOCUMENTS else self.models.text
        embeddings = embedder.embed([text])
        if not embeddings:
            return None

        return PreparedDocument(
            path=Path(path),
            content_hash=fingerprint(text),
            embeddings=embeddings,
            table=table,
        )

    def write_document(self, doc: PreparedDocument) -> int:
        """
        Upsert a prepared document and drop it from the other text table.

        The cleanup is best effort: a broken other table is logged and does
        not fail the write that already landed.
        """
        written = self.store.table(doc.table).upsert(str(doc.path), doc.content_hash, doc.embeddings)
        for kind in TEXT_TABLES:
            if kind is doc.table:
                continue
            try:
                self.store.table(kind).delete(str(doc.path))
            except DatabaseError as e:
                logger.warning(f"Could not clear {doc.path} from {kind.value}: {e}")
        return written

    def index_image(self, path: Path) -> int:
        image, width, height = self.extractor.load_image(path)
        file_hash = fingerprint_file(path)
        embedding = self.models.image.embed_pil(image)
        return self.store.table(TableKind.IMAGES).upsert_image(
            str(path), file_hash, embedding, width=width, height=height,
        )

    def remove_path(self, path: Path) -> int:
        """
        Delete path from every table and return how many tables held it.

        Every table is attempted; the first failure is re-raised afterwards.
        Raises RecordNotFoundError when no table held the path.
        """
        removed = 0
        errors: List[DatabaseError] = []
        for kind in TableKind:
            try:
                table = self.store.table(kind)
                if table.contains(str(path)):
                    table.delete(str(path))
                    removed += 1
            except DatabaseError as e:
                logger.warning(f"Could not remove {path} from {kind.value}: {e}")
                errors.append(e)

        if errors:
            raise errors[0]
        if not removed:
            raise RecordNotFoundError(f"{path} is not in the index")
        return removed

    # ------------------------------------------------------------------
    # Watching
    # ------------------------------------------------------------------

    async def start_watching(self, roots: Optional[List[Path]] = None):
        """
        Start the file watcher for real-time updates.

        Runs until stop_watching() is called.
        """
        roots = roots or self.config.roots
        self._watcher = Watcher(self.config)
        self._watcher.start(roots)
        pipeline = SyncPipeline(self, roots)
        await pipeline.run(self._watcher.queue)

    def stop_watching(self):
        if self._watcher:
            self._watcher.stop()
            self._watcher = None

    def close(self):
        """Clean up resources."""
        self.stop_watching()
        if self._executor:
            self._executor.shutdown(wait=False)
            self._executor = None


def main():
    """CLI entry point."""
    import argparse

    from .benchmark import benchmark_models
    from .errors import BenchmarkError
    from .search import SearchEngine

    parser = argparse.ArgumentParser(description="Local semantic file indexer")
    parser.add_argument("--roots", nargs="+", help="Directories to index")
    parser.add_argument("--downloads", action="store_true", help="Index ~/Downloads")
    parser.add_argument("--watch", action="store_true", help="Watch for changes after indexing")
    parser.add_argument("--query", help="Run one search after indexing")
    parser.add_argument(
        "--content-type", default="all", choices=["all", "text", "image"],
        help="Modalities to search",
    )
    parser.add_argument("--limit", type=int, help="Maximum results")
    parser.add_argument(
        "--benchmark", metavar="DIR",
        help="Time the text models on the .txt/.md files in DIR and exit",
    )
    parser.add_argument("--file-limit", type=int, help="Maximum sample files for --benchmark")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(name)s: %(message)s"
    )

    if args.benchmark:
        try:
            results = benchmark_models(
                EmbeddingModels.from_config(), Path(args.benchmark).expanduser(), args.file_limit
            )
        except BenchmarkError as e:
            print(f"Benchmark failed: {e}")
            raise SystemExit(1)
        for result in results:
            print(result)
        return

    roots = None
    if args.roots:
        roots = [Path(r).expanduser().resolve() for r in args.roots]

    async def _main():
        orchestrator = Orchestrator()

        try:
            if args.downloads:
                stats = await orchestrator.index_downloads()
            else:
                stats = await orchestrator.index_roots(roots)
            print(f"\n{stats}")

            if args.query:
                engine = SearchEngine(orchestrator.store, orchestrator.models, orchestrator.config)
                results = engine.search(
                    args.query,
                    limit=args.limit,
                    content_filter=SearchContentType.from_str(args.content_type),
                )
                for result in results:
                    print(f"{result.score:.3f}  [{result.content_type.value}]  {result.file_path}")

            if args.watch:
                print("\nWatching for changes (Ctrl+C to stop)...")
                await orchestrator.start_watching(roots)

        except KeyboardInterrupt:
            print("\nStopped.")
        finally:
            orchestrator.close()

    asyncio.run(_main())


if __name__ == "__main__":
    main()
