"""
Search Tests - Verify ranking, thresholds, dedup and graceful degradation.
"""

import numpy as np
import pytest
from PIL import Image

from semantic_index.embedder import EmbeddingModels
from semantic_index.errors import EmptyQueryError, InitializationError, SearchOperationError
from semantic_index.models import ContentType, SearchContentType, TableKind
from semantic_index.search import SearchEngine, best_per_file, distance_to_score
from semantic_index.models import SearchResult


def index_text(models, store, path: str, text: str, kind=TableKind.DOCUMENTS):
    embedder = models.alternate if kind is TableKind.ALTERNATE_DOCUMENTS else models.text
    store.table(kind).upsert(path, f"hash-{path}", embedder.embed([text]))


def index_image(models, store, path: str, color: tuple[int, int, int]):
    vector = models.image.embed_pil(Image.new("RGB", (4, 4), color))
    store.table(TableKind.IMAGES).upsert_image(path, f"hash-{path}", vector, width=4, height=4)


class TestScore:
    def test_distance_to_score_bounds(self):
        assert distance_to_score(0.0) == 1.0
        assert distance_to_score(2.0) == 0.0
        assert distance_to_score(1.0) == 0.5
        assert distance_to_score(-0.001) == 1.0
        assert distance_to_score(2.5) == 0.0

    def test_best_per_file(self):
        results = [
            SearchResult("/a", 0.7, "h", 0, ContentType.TEXT),
            SearchResult("/a", 0.9, "h", 0, ContentType.TEXT),
            SearchResult("/b", 0.8, "h", 0, ContentType.TEXT),
        ]
        best = {r.file_path: r.score for r in best_per_file(results)}
        assert best == {"/a": 0.9, "/b": 0.8}


class TestTextSearch:
    """Tests for the text path."""

    def test_empty_query(self, search_engine):
        with pytest.raises(EmptyQueryError):
            search_engine.search("   ")

    def test_finds_matching_document(self, search_engine, models, store):
        index_text(models, store, "/docs/zebra.txt", "Zebra migration across the savanna")
        index_text(models, store, "/docs/bread.txt", "Baking sourdough bread with a starter")

        results = search_engine.search("zebra savanna", min_score=0.7)

        assert [r.file_path for r in results] == ["/docs/zebra.txt"]
        assert results[0].content_type is ContentType.TEXT
        assert results[0].content_hash == "hash-/docs/zebra.txt"
        assert results[0].last_modified > 0
        assert results[0].image_data is None

    def test_one_result_per_document(self, search_engine, models, store):
        """Many matching chunks collapse to the best one."""
        chunks = [
            "zebra zebra zebra stripes",
            "zebra stripes and other things entirely unrelated here",
            "zebra",
        ]
        vectors = [models.text.embed_query(c) for c in chunks]
        store.table(TableKind.DOCUMENTS).upsert("/docs/zebras.txt", "h", vectors)

        results = search_engine.search("zebra", min_score=0.5)

        assert len(results) == 1
        best = max(
            distance_to_score(1.0 - float(v @ models.text.embed_query("zebra"))) for v in vectors
        )
        assert results[0].score == pytest.approx(best, abs=1e-3)

    def test_min_score_filters(self, search_engine, models, store):
        index_text(models, store, "/docs/zebra.txt", "Zebra migration across the savanna")

        assert search_engine.search("volcano eruption", min_score=0.9) == []

    def test_scores_sorted_and_bounded(self, search_engine, models, store):
        index_text(models, store, "/docs/1.txt", "apple banana cherry")
        index_text(models, store, "/docs/2.txt", "apple banana")
        index_text(models, store, "/docs/3.txt", "apple")

        results = search_engine.search("apple banana cherry", min_score=0.0)

        scores = [r.score for r in results]
        assert scores == sorted(scores, reverse=True)
        assert all(0.0 <= s <= 1.0 for s in scores)
        assert results[0].file_path == "/docs/1.txt"

    def test_limit_truncates(self, search_engine, models, store):
        for i in range(6):
            index_text(models, store, f"/docs/{i}.txt", f"common words document {i}")

        results = search_engine.search("common words", limit=3, min_score=0.0)

        assert len(results) == 3

    def test_searches_alternate_table(self, search_engine, models, store):
        index_text(
            models, store, "/docs/amharic.txt", "ሰላም ለዓለም ኢትዮጵያ",
            kind=TableKind.ALTERNATE_DOCUMENTS,
        )

        results = search_engine.search("ኢትዮጵያ", min_score=0.6)

        assert [r.file_path for r in results] == ["/docs/amharic.txt"]


class TestModalities:
    """Tests for content filters and cross-modal search."""

    def test_image_found_by_colour_word(self, search_engine, models, store):
        index_image(models, store, "/pics/red.jpg", (255, 0, 0))
        index_image(models, store, "/pics/blue.jpg", (0, 0, 255))

        results = search_engine.search("red", min_score=0.8, content_filter=SearchContentType.IMAGE_ONLY)

        assert [r.file_path for r in results] == ["/pics/red.jpg"]
        assert results[0].content_type is ContentType.IMAGE
        assert results[0].image_data.width == 4

    def test_text_only_excludes_images(self, search_engine, models, store):
        index_image(models, store, "/pics/red.jpg", (255, 0, 0))

        results = search_engine.search("red", min_score=0.0, content_filter=SearchContentType.TEXT_ONLY)

        assert all(r.content_type is ContentType.TEXT for r in results)

    def test_all_merges_modalities(self, search_engine, models, store):
        index_text(models, store, "/docs/red.txt", "red")
        index_image(models, store, "/pics/red.jpg", (255, 0, 0))

        results = search_engine.search("red", min_score=0.8)

        assert {r.file_path for r in results} == {"/docs/red.txt", "/pics/red.jpg"}

    def test_content_type_from_str(self):
        assert SearchContentType.from_str("text") is SearchContentType.TEXT_ONLY
        assert SearchContentType.from_str("IMAGE") is SearchContentType.IMAGE_ONLY
        assert SearchContentType.from_str("all") is SearchContentType.ALL
        assert SearchContentType.from_str(None) is SearchContentType.ALL
        with pytest.raises(ValueError):
            SearchContentType.from_str("video")


class TestDegradation:
    """Failures in one pipeline."""

    def test_image_failure_falls_back_to_text(self, test_config, store, fake_loader):
        fake_loader.failing.add("fake-clip")
        models = EmbeddingModels.from_config(test_config, loader=fake_loader)
        engine = SearchEngine(store, models, test_config)
        index_text(models, store, "/docs/red.txt", "red")
        store.table(TableKind.IMAGES).upsert_image(
            "/pics/red.jpg", "h", np.eye(test_config.image_dim, dtype=np.float32)[0]
        )

        results = engine.search("red", min_score=0.5)

        assert [r.file_path for r in results] == ["/docs/red.txt"]

    def test_text_init_failure_fails_every_search(self, test_config, store, fake_loader):
        fake_loader.failing.add("fake-text")
        models = EmbeddingModels.from_config(test_config, loader=fake_loader)
        engine = SearchEngine(store, models, test_config)

        for _ in range(3):
            with pytest.raises(SearchOperationError) as exc_info:
                engine.search("anything")
            assert isinstance(exc_info.value.__cause__, InitializationError)

        assert fake_loader.calls.count("fake-text") == 1

    def test_alternate_failure_is_skipped(self, test_config, store, fake_loader):
        healthy = EmbeddingModels.from_config(test_config, loader=fake_loader)
        index_text(healthy, store, "/docs/zebra.txt", "zebra savanna")
        index_text(healthy, store, "/docs/am.txt", "ሰላም", kind=TableKind.ALTERNATE_DOCUMENTS)

        fake_loader.failing.add("fake-alternate")
        broken = EmbeddingModels.from_config(test_config, loader=fake_loader)
        engine = SearchEngine(store, broken, test_config)

        results = engine.search("zebra savanna", min_score=0.7)

        assert [r.file_path for r in results] == ["/docs/zebra.txt"]
