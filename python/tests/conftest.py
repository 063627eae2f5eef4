"""
Test Configuration - Shared fixtures for semantic index tests.

Embedding models are replaced by small deterministic fakes injected
through the model loader, so no weights are downloaded. The vector store
is a real LanceDB directory inside a temp dir.
"""

import re
import shutil
import tempfile
import zlib
from pathlib import Path
from typing import Generator

import numpy as np
import pytest
from PIL import Image

from semantic_index.config import IndexerConfig, set_config
from semantic_index.embedder import EmbeddingModels
from semantic_index.models import InMemoryRunStatsStore
from semantic_index.orchestrator import Orchestrator
from semantic_index.search import SearchEngine
from semantic_index.store import VectorStore


TEXT_DIM = 128
IMAGE_DIM = 16

_WORD_RE = re.compile(r"\w+")
_COLOR_AXES = {"red": 0, "green": 1, "blue": 2}


def _normalize(vector: np.ndarray) -> np.ndarray:
    return vector / np.linalg.norm(vector)


class FakeTextModel:
    """Hashed bag-of-words. Texts sharing words have high cosine similarity."""

    def __init__(self, dim: int):
        self.dim = dim
        self.inputs: list[str] = []

    def encode(self, texts, batch_size=32, convert_to_numpy=True, normalize_embeddings=True):
        self.inputs.extend(texts)
        rows = []
        for text in texts:
            text = re.sub(r"^(query|passage): ", "", text)
            vector = np.zeros(self.dim, dtype=np.float32)
            vector[0] = 0.01
            for word in _WORD_RE.findall(text.lower()):
                vector[1 + zlib.crc32(word.encode("utf-8")) % (self.dim - 1)] += 1.0
            rows.append(_normalize(vector))
        return np.vstack(rows)


class FakeClipModel:
    """Images map to their mean colour; the words red/green/blue map to the same axes."""

    def __init__(self, dim: int):
        self.dim = dim

    def encode(self, items, batch_size=32, convert_to_numpy=True, normalize_embeddings=True):
        rows = []
        for item in items:
            vector = np.zeros(self.dim, dtype=np.float32)
            vector[3] = 0.01
            if isinstance(item, str):
                for word in _WORD_RE.findall(item.lower()):
                    if word in _COLOR_AXES:
                        vector[_COLOR_AXES[word]] += 1.0
            else:
                means = np.asarray(item.convert("RGB"), dtype=np.float32).mean(axis=(0, 1)) / 255.0
                vector[:3] = means
            rows.append(_normalize(vector))
        return np.vstack(rows)


class FakeModelLoader:
    """ModelLoader that builds fakes and can be told to fail for given model names."""

    def __init__(self, config: IndexerConfig):
        self.config = config
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self.models: dict[str, object] = {}

    def __call__(self, model_name: str):
        self.calls.append(model_name)
        if model_name in self.failing:
            raise RuntimeError(f"cannot download {model_name}")
        if model_name == self.config.image_model:
            model = FakeClipModel(self.config.image_dim)
        else:
            model = FakeTextModel(self.config.text_dim)
        self.models[model_name] = model
        return model


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    tmp = tempfile.mkdtemp(prefix="semindex_test_")
    # Resolve to handle macOS /var -> /private/var symlink
    resolved = Path(tmp).resolve()
    yield resolved
    shutil.rmtree(str(resolved), ignore_errors=True)


@pytest.fixture
def files_dir(temp_dir: Path) -> Path:
    root = temp_dir / "files"
    root.mkdir()
    return root


@pytest.fixture
def test_config(temp_dir: Path, files_dir: Path) -> IndexerConfig:
    """Create an isolated test configuration."""
    downloads = temp_dir / "Downloads"
    downloads.mkdir()
    config = IndexerConfig(
        roots=[files_dir],
        db_path=temp_dir / "lancedb",
        downloads_path=downloads,
        executor_workers=4,
        text_model="fake-text",
        text_dim=TEXT_DIM,
        alternate_model="fake-alternate",
        alternate_dim=TEXT_DIM,
        image_model="fake-clip",
        image_dim=IMAGE_DIM,
    )
    set_config(config)
    return config


@pytest.fixture
def fake_loader(test_config: IndexerConfig) -> FakeModelLoader:
    return FakeModelLoader(test_config)


@pytest.fixture
def models(test_config: IndexerConfig, fake_loader: FakeModelLoader) -> EmbeddingModels:
    return EmbeddingModels.from_config(test_config, loader=fake_loader)


@pytest.fixture
def store(test_config: IndexerConfig) -> Generator[VectorStore, None, None]:
    s = VectorStore(test_config)
    yield s
    s.close()


@pytest.fixture
def stats_store() -> InMemoryRunStatsStore:
    return InMemoryRunStatsStore()


@pytest.fixture
def orchestrator(test_config, store, models, stats_store) -> Generator[Orchestrator, None, None]:
    o = Orchestrator(test_config, store=store, models=models, stats_store=stats_store)
    yield o
    o.close()


@pytest.fixture
def search_engine(test_config, store, models) -> SearchEngine:
    return SearchEngine(store, models, test_config)


def long_text(sentences: int = 50) -> str:
    """English prose long enough to need several chunks."""
    return " ".join(
        f"Sentence number {i} describes the quarterly budget review meeting in detail."
        for i in range(sentences)
    )


AMHARIC_TEXT = (
    "ሰላም ለዓለም። ይህ የአማርኛ ሰነድ ነው። ኢትዮጵያ በምስራቅ አፍሪካ የምትገኝ ሀገር ናት። "
    "አዲስ አበባ የኢትዮጵያ ዋና ከተማ ናት።"
)


@pytest.fixture
def sample_files(files_dir: Path) -> dict[str, Path]:
    """Create sample files for testing."""
    files = {}

    txt = files_dir / "zebra.txt"
    txt.write_text(
        "Zebra migration across the Serengeti savanna happens every year. "
        "Herds follow the rains in search of fresh grass."
    )
    files["txt"] = txt

    md = files_dir / "notes.md"
    md.write_text("# Sourdough\n\nBaking sourdough bread needs a lively starter and patience.")
    files["md"] = md

    nested_dir = files_dir / "subdir" / "nested"
    nested_dir.mkdir(parents=True)
    nested = nested_dir / "volcano.txt"
    nested.write_text("Volcanic eruptions release magma, ash and sulfur dioxide gas.")
    files["nested"] = nested

    amharic = files_dir / "amharic.txt"
    amharic.write_text(AMHARIC_TEXT, encoding="utf-8")
    files["amharic"] = amharic

    image = files_dir / "red_square.jpg"
    Image.new("RGB", (12, 8), (255, 0, 0)).save(image, "JPEG")
    files["image"] = image

    unsupported = files_dir / "script.py"
    unsupported.write_text("print('hello')")
    files["unsupported"] = unsupported

    # Pruned by the scanner
    hidden = files_dir / ".hidden.txt"
    hidden.write_text("This should be skipped.")
    files["hidden"] = hidden

    node_modules = files_dir / "node_modules"
    node_modules.mkdir()
    (node_modules / "readme.txt").write_text("package readme")
    files["node_modules"] = node_modules / "readme.txt"

    bundle = files_dir / "Tool.app"
    bundle.mkdir()
    (bundle / "info.txt").write_text("bundle contents")
    files["bundle"] = bundle / "info.txt"

    return files


def unit_vector(dim: int, axis: int) -> np.ndarray:
    vector = np.zeros(dim, dtype=np.float32)
    vector[axis] = 1.0
    return vector
