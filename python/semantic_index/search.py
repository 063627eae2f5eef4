"""
Search Engine - Multimodal semantic search over the vector store.

A query is embedded once per pipeline, each table is asked for 2x limit
candidates, distances are turned into scores, rows under min_score are
dropped, each file keeps only its best row, and the merged list is sorted
and truncated.

Score is clamp(1 - distance/2, 0, 1) for every modality, where distance is
LanceDB's cosine distance (0..2).
"""

import logging
from typing import Any, Dict, Iterable, List, Optional

from .config import IndexerConfig, get_config
from .embedder import EmbeddingModels
from .errors import DatabaseError, EmbeddingError, EmptyQueryError, SearchOperationError
from .models import ContentType, ImageData, SearchContentType, SearchResult, TableKind
from .store import VectorStore, epoch_seconds


logger = logging.getLogger(__name__)


def distance_to_score(distance: float) -> float:
    """Map a cosine distance to a bounded, higher-is-better score."""
    return min(1.0, max(0.0, 1.0 - float(distance) / 2.0))


def best_per_file(results: Iterable[SearchResult]) -> List[SearchResult]:
    """Keep only the highest-scoring result for each file_path."""
    best: Dict[str, SearchResult] = {}
    for result in results:
        current = best.get(result.file_path)
        if current is None or result.score > current.score:
            best[result.file_path] = result
    return list(best.values())


class SearchEngine:
    """
    Read-only consumer of the vector store.

    The general text pipeline is required: if it fails the whole search
    fails. The alternate-script and image pipelines are best effort.
    """

    def __init__(
        self,
        store: VectorStore,
        models: EmbeddingModels,
        config: IndexerConfig | None = None,
    ):
        self.config = config or get_config()
        self.store = store
        self.models = models

    def search(
        self,
        query: str,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
        content_filter: SearchContentType = SearchContentType.ALL,
    ) -> List[SearchResult]:
        query = (query or "").strip()
        if not query:
            raise EmptyQueryError()

        limit = self.config.default_search_limit if limit is None else limit
        min_score = self.config.default_min_score if min_score is None else min_score
        if limit <= 0:
            return []
        candidates = limit * 2

        results: List[SearchResult] = []

        if content_filter.includes_text:
            results.extend(self._search_text(query, candidates, min_score))

        if content_filter.includes_images:
            results.extend(self._search_images(query, candidates, min_score))

        results.sort(key=lambda r: r.score, reverse=True)
        results = results[:limit]
        logger.info(f"Search '{query}' returned {len(results)} results")
        return results

    def _search_text(self, query: str, candidates: int, min_score: float) -> List[SearchResult]:
        try:
            vector = self.models.text.embed_query(query)
            rows = self.store.table(TableKind.DOCUMENTS).nearest(vector, candidates)
        except (EmbeddingError, DatabaseError) as e:
            raise SearchOperationError(f"Text search failed: {e}") from e

        results = self._text_results(rows, min_score)

        try:
            alternate = self.store.table(TableKind.ALTERNATE_DOCUMENTS)
            if alternate.count() > 0:
                vector = self.models.alternate.embed_query(query)
                rows = alternate.nearest(vector, candidates)
                results.extend(self._text_results(rows, min_score))
        except (EmbeddingError, DatabaseError) as e:
            logger.warning(f"Alternate-language search skipped: {e}")

        # One document can sit in only one text table, but dedup across both anyway
        return best_per_file(results)

    def _search_images(self, query: str, candidates: int, min_score: float) -> List[SearchResult]:
        try:
            table = self.store.table(TableKind.IMAGES)
            if table.count() == 0:
                return []
            vector = self.models.image.embed_text_as_image_query(query)
            rows = table.nearest(vector, candidates)
        except (EmbeddingError, DatabaseError) as e:
            logger.warning(f"Image search skipped: {e}")
            return []

        results = []
        for row in rows:
            score = distance_to_score(row.get("_distance", 2.0))
            if score < min_score:
                continue
            results.append(SearchResult(
                file_path=row["file_path"],
                score=score,
                content_hash=row["file_hash"],
                last_modified=epoch_seconds(row.get("last_modified")),
                content_type=ContentType.IMAGE,
                image_data=ImageData(
                    width=row.get("width"),
                    height=row.get("height"),
                    thumbnail_path=row.get("thumbnail_path"),
                ),
            ))
        return best_per_file(results)

    @staticmethod
    def _text_results(rows: List[Dict[str, Any]], min_score: float) -> List[SearchResult]:
        results = []
        for row in rows:
            score = distance_to_score(row.get("_distance", 2.0))
            if score < min_score:
                continue
            results.append(SearchResult(
                file_path=row["file_path"],
                score=score,
                content_hash=row["content_hash"],
                last_modified=epoch_seconds(row.get("last_modified")),
                content_type=ContentType.TEXT,
            ))
        return results
