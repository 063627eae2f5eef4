"""
Benchmark Tests - Verify model timing over sample files.

Tests:
- Sample selection (extensions, order, limit)
- One result per text model with its vector width
- A model that cannot load is left out
- Nothing to embed is an error
"""

import pytest

from semantic_index.benchmark import BenchmarkResult, benchmark_models, sample_files
from semantic_index.embedder import EmbeddingModels
from semantic_index.errors import BenchmarkError

from conftest import TEXT_DIM


@pytest.fixture
def samples_dir(temp_dir):
    root = temp_dir / "samples"
    root.mkdir()
    (root / "b.txt").write_text("Beekeepers check the hives before the first frost.")
    (root / "a.md").write_text("# Notes\n\nTide tables for the northern harbour.")
    (root / "c.txt").write_text("Cartographers redraw the coastline every decade.")
    (root / "photo.png").write_bytes(b"not a sample")
    (root / "nested").mkdir()
    (root / "nested" / "d.txt").write_text("Not picked up, samples are not recursive.")
    return root


class TestSampleFiles:
    """Tests for sample selection."""

    def test_text_files_in_name_order(self, samples_dir):
        assert [p.name for p in sample_files(samples_dir)] == ["a.md", "b.txt", "c.txt"]

    def test_file_limit(self, samples_dir):
        assert [p.name for p in sample_files(samples_dir, file_limit=2)] == ["a.md", "b.txt"]


class TestBenchmarkModels:
    """Tests for benchmark_models."""

    def test_result_per_text_model(self, models, samples_dir):
        results = benchmark_models(models, samples_dir)

        assert [r.model_name for r in results] == ["fake-text", "fake-alternate"]
        for result in results:
            assert result.files_processed == 3
            assert result.embedding_dimension == TEXT_DIM
            assert result.total_tokens_processed > 0
            assert result.initialization_time_ms >= 0
            assert result.average_embedding_time_ms >= 0

    def test_image_model_not_loaded(self, models, fake_loader, samples_dir):
        benchmark_models(models, samples_dir)
        assert "fake-clip" not in fake_loader.calls

    def test_file_limit(self, models, samples_dir):
        results = benchmark_models(models, samples_dir, file_limit=1)
        assert {r.files_processed for r in results} == {1}

    def test_failing_model_left_out(self, test_config, fake_loader, samples_dir):
        fake_loader.failing.add("fake-alternate")
        models = EmbeddingModels.from_config(test_config, loader=fake_loader)

        results = benchmark_models(models, samples_dir)

        assert [r.model_name for r in results] == ["fake-text"]

    def test_no_samples(self, models, temp_dir):
        empty = temp_dir / "empty"
        empty.mkdir()
        with pytest.raises(BenchmarkError):
            benchmark_models(models, empty)

    def test_missing_sample_dir(self, models, temp_dir):
        with pytest.raises(BenchmarkError):
            benchmark_models(models, temp_dir / "missing")

    def test_blank_samples(self, models, temp_dir):
        blank = temp_dir / "blank"
        blank.mkdir()
        (blank / "a.txt").write_text("   \n")
        with pytest.raises(BenchmarkError):
            benchmark_models(models, blank)

    def test_result_dict(self):
        result = BenchmarkResult(
            model_name="m",
            initialization_time_ms=5,
            average_embedding_time_ms=1.5,
            total_embedding_time_ms=3,
            files_processed=2,
            total_tokens_processed=10,
            embedding_dimension=4,
        )
        assert result.to_dict()["embedding_dimension"] == 4
        assert "1.50 ms/file" in str(result)
