"""
Commands - The surface exposed to the desktop shell.

Every command returns a plain dict on success or a human-readable string
on failure; no exceptions cross this boundary.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .benchmark import benchmark_models
from .context import IndexContext
from .errors import BenchmarkError, EmptyQueryError, IndexingError, SearchError
from .models import RunStats, SearchContentType
from .repair import repair_database


logger = logging.getLogger(__name__)

CommandResult = Union[Dict[str, Any], str]


def indexing_response(stats: RunStats, success: bool = True, message: str = "") -> Dict[str, Any]:
    """Shape RunStats the way the shell's indexing dialog expects."""
    if not message:
        message = (
            f"Indexed {stats.files_indexed} files "
            f"({stats.files_failed} failed, {stats.files_skipped} skipped)"
        )
    return {
        "files_processed": stats.files_processed,
        "files_indexed": stats.files_indexed,
        "files_skipped": stats.files_skipped,
        "files_failed": stats.files_failed,
        "time_taken_ms": stats.elapsed_ms,
        "success": success,
        "message": message,
        "indexed_files": list(stats.indexed_files),
        "failed_files": list(stats.failed_files),
    }


class Commands:
    """Async command handlers bound to one IndexContext."""

    def __init__(self, context: IndexContext):
        self.context = context

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
        content_type: Optional[str] = "all",
    ) -> CommandResult:
        try:
            content_filter = SearchContentType.from_str(content_type)
        except ValueError as e:
            return str(e)

        orchestrator = self.context.orchestrator
        try:
            results = await orchestrator.run_blocking(
                self.context.search_engine.search, query, limit, min_score, content_filter
            )
        except EmptyQueryError as e:
            return str(e)
        except SearchError as e:
            logger.error(f"Search failed: {e}")
            return f"Search failed: {e}"

        return {"results": [r.to_dict() for r in results]}

    async def index_folder(self, path: str) -> CommandResult:
        folder = Path(path).expanduser()
        if not folder.exists():
            return f"Folder does not exist: {folder}"
        if not folder.is_dir():
            return f"Not a directory: {folder}"

        try:
            stats = await self.context.orchestrator.index_tree(folder)
        except IndexingError as e:
            logger.error(f"Indexing {folder} failed: {e}")
            return f"Indexing failed: {e}"
        return indexing_response(stats)

    async def index_downloads(self) -> CommandResult:
        return await self.index_folder(str(self.context.config.downloads_path))

    async def run_startup_indexing(self) -> Optional[RunStats]:
        """Index Downloads once at application start. Failures are logged, never raised."""
        logger.info("Starting automatic Downloads indexing")
        downloads = self.context.config.downloads_path
        if not downloads.is_dir():
            logger.warning(f"Startup indexing skipped, {downloads} is not a directory")
            return None
        try:
            stats = await self.context.orchestrator.index_downloads()
        except IndexingError as e:
            logger.error(f"Startup indexing failed: {e}")
            return None
        logger.info(f"Startup indexing completed: {stats}")
        return stats

    async def get_last_run_stats(self) -> CommandResult:
        stats = self.context.stats_store.get()
        return {"stats": stats.to_dict() if stats else None}

    async def clear_index(self) -> CommandResult:
        try:
            await self.context.orchestrator.run_blocking(self.context.store.clear_all)
        except IndexingError as e:
            return f"Failed to clear index: {e}"
        self.context.stats_store.clear()
        return {"success": True, "message": "Index cleared"}

    async def get_vector_db_stats(self) -> CommandResult:
        try:
            return await self.context.orchestrator.run_blocking(self.context.store.stats)
        except IndexingError as e:
            return f"Failed to read index stats: {e}"

    async def run_benchmarks(self, sample_dir: str, file_limit: Optional[int] = None) -> CommandResult:
        """Time the loaded text models on sample files and summarise."""
        folder = Path(sample_dir).expanduser()
        if not folder.is_dir():
            return f"Sample directory does not exist or is not a directory: {folder}"

        orchestrator = self.context.orchestrator
        try:
            results = await orchestrator.run_blocking(
                benchmark_models, self.context.models, folder, file_limit, orchestrator.extractor
            )
        except BenchmarkError as e:
            return f"Benchmark failed: {e}"

        messages = []
        if not results:
            messages.append("No benchmark results were generated. Check logs for errors.")
        else:
            messages.append(f"Successfully benchmarked {len(results)} models.")
            if len(results) >= 2:
                fastest = min(results, key=lambda r: r.average_embedding_time_ms)
                messages.append(
                    f"Fastest model for embeddings: {fastest.model_name} "
                    f"(avg. {fastest.average_embedding_time_ms:.2f} ms per file)"
                )
                for result in results:
                    messages.append(
                        f"Model {result.model_name} produces {result.embedding_dimension}-dimensional embeddings"
                    )

        return {"results": [r.to_dict() for r in results], "messages": messages}

    async def repair_database(self) -> CommandResult:
        """Drop every table; they are recreated empty on next use."""
        report = await self.context.orchestrator.run_blocking(
            repair_database, self.context.store
        )
        if report.errors:
            return "Repair incomplete: " + "; ".join(report.errors)
        return {
            "success": True,
            "message": f"Dropped {len(report.dropped)} tables, removed {len(report.removed)} paths",
            "dropped": report.dropped,
            "removed": [str(p) for p in report.removed],
        }
