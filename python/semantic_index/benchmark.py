"""
Benchmark - Time the text embedding pipelines on a folder of sample files.

For each text model: how long it takes to load, the average time to embed
one file, and the vector width it produces. Used to compare model choices
before changing config.text_model / config.alternate_model.

Usage:
    semantic-index --benchmark ~/samples --file-limit 20
"""

import logging
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from .embedder import EmbeddingModels, TextEmbedder
from .errors import BenchmarkError, EmbeddingError, ExtractionError
from .extractor import Extractor


logger = logging.getLogger(__name__)

SAMPLE_EXTENSIONS = {".txt", ".md"}


@dataclass
class BenchmarkResult:
    """Timing for one embedding model."""
    model_name: str
    initialization_time_ms: int
    average_embedding_time_ms: float
    total_embedding_time_ms: int
    files_processed: int
    total_tokens_processed: int     # whitespace-split words, approximate
    embedding_dimension: int

    def to_dict(self) -> dict:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"{self.model_name}: init {self.initialization_time_ms} ms, "
            f"{self.average_embedding_time_ms:.2f} ms/file over {self.files_processed} files "
            f"(~{self.total_tokens_processed} tokens), dim {self.embedding_dimension}"
        )


def sample_files(sample_dir: Path, file_limit: Optional[int] = None) -> List[Path]:
    """Plain-text samples directly inside sample_dir, in name order."""
    files = sorted(
        p for p in Path(sample_dir).iterdir()
        if p.is_file() and p.suffix.lower() in SAMPLE_EXTENSIONS
    )
    if file_limit is not None:
        files = files[:file_limit]
    return files


def benchmark_embedder(embedder: TextEmbedder, texts: List[str]) -> BenchmarkResult:
    """Load the model, then embed each text once. Raises EmbeddingError."""
    logger.info(f"Benchmarking {embedder.model_name} on {len(texts)} files")

    start = time.perf_counter()
    embedder.load()
    init_ms = int((time.perf_counter() - start) * 1000)

    total = 0.0
    tokens = 0
    dimension = 0
    for text in texts:
        start = time.perf_counter()
        vectors = embedder.embed([text])
        total += time.perf_counter() - start
        tokens += len(text.split())
        if vectors:
            dimension = len(vectors[0])

    total_ms = total * 1000
    return BenchmarkResult(
        model_name=embedder.model_name,
        initialization_time_ms=init_ms,
        average_embedding_time_ms=total_ms / len(texts) if texts else 0.0,
        total_embedding_time_ms=int(total_ms),
        files_processed=len(texts),
        total_tokens_processed=tokens,
        embedding_dimension=dimension,
    )


def benchmark_models(
    models: EmbeddingModels,
    sample_dir: Path,
    file_limit: Optional[int] = None,
    extractor: Optional[Extractor] = None,
) -> List[BenchmarkResult]:
    """
    Benchmark the general and alternate-script text models.

    A model that fails to load or embed is logged and left out of the
    results. Raises BenchmarkError when there is nothing to embed.
    """
    if not Path(sample_dir).is_dir():
        raise BenchmarkError(f"Sample directory does not exist or is not a directory: {sample_dir}")

    extractor = extractor or Extractor()
    paths = sample_files(sample_dir, file_limit)
    if not paths:
        raise BenchmarkError(f"No .txt or .md files found in {sample_dir}")

    texts = []
    for path in paths:
        try:
            text = extractor.extract(path).text.strip()
        except ExtractionError as e:
            logger.warning(f"Skipping benchmark sample {path}: {e}")
            continue
        if text:
            texts.append(text)
    if not texts:
        raise BenchmarkError(f"No readable text in the samples under {sample_dir}")

    results = []
    for embedder in (models.text, models.alternate):
        try:
            result = benchmark_embedder(embedder, texts)
        except EmbeddingError as e:
            logger.error(f"Failed to benchmark {embedder.model_name}: {e}")
            continue
        logger.info(f"Benchmark: {result}")
        results.append(result)

    logger.info(f"Benchmarked {len(results)} models")
    return results
