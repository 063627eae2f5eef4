"""
Embedder - Three sentence-transformers pipelines behind explicit handles.

- general text (English-first, BGE small)
- alternate-script text (multilingual E5, needs "query: "/"passage: " prefixes)
- image (CLIP; text and image encoders share one vector space)

Models are loaded lazily on first use. A failed load is remembered and
re-raised as InitializationError on every later call instead of retrying.
"""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

import numpy as np
from PIL import Image

from .chunker import Chunker
from .config import IndexerConfig, get_config
from .errors import GenerationError, InitializationError


logger = logging.getLogger(__name__)

ModelLoader = Callable[[str], Any]


def select_device() -> str:
    """Pick the best available torch device."""
    import torch

    if torch.backends.mps.is_available():
        return "mps"
    if torch.cuda.is_available():
        return "cuda"
    return "cpu"


def load_sentence_transformer(model_name: str) -> Any:
    """Default ModelLoader: a SentenceTransformer on the best device."""
    from sentence_transformers import SentenceTransformer

    device = select_device()
    logger.info(f"Loading embedding model {model_name} on {device}...")
    model = SentenceTransformer(model_name, device=device)
    logger.info(
        f"Loaded {model_name} (dim={model.get_sentence_embedding_dimension()}) on {device}"
    )
    return model


class _LazyModel:
    """A model handle that loads once and caches either the model or the failure."""

    def __init__(self, model_name: str, loader: ModelLoader):
        self.model_name = model_name
        self._loader = loader
        self._model = None
        self._error: Optional[BaseException] = None
        self._lock = threading.Lock()

    def get(self) -> Any:
        with self._lock:
            if self._error is not None:
                raise InitializationError(
                    f"Model {self.model_name} failed to initialize: {self._error}"
                ) from self._error
            if self._model is None:
                try:
                    self._model = self._loader(self.model_name)
                except Exception as e:
                    self._error = e
                    logger.error(f"Failed to load model {self.model_name}: {e}")
                    raise InitializationError(
                        f"Model {self.model_name} failed to initialize: {e}"
                    ) from e
            return self._model

    @property
    def failed(self) -> bool:
        return self._error is not None


def _to_vectors(raw: Any, count: int, dimension: int, model_name: str) -> List[np.ndarray]:
    vectors = np.asarray(raw, dtype=np.float32)
    if vectors.ndim == 1:
        vectors = vectors.reshape(1, -1)
    if vectors.shape != (count, dimension):
        raise GenerationError(
            f"{model_name} returned shape {vectors.shape}, expected ({count}, {dimension})"
        )
    if not np.all(np.isfinite(vectors)):
        raise GenerationError(f"{model_name} returned non-finite values")
    return list(vectors)


class TextEmbedder:
    """
    Text embedding pipeline.

    Passage calls chunk each text first and return one vector per chunk,
    in order. Query calls skip chunking but drop empty strings.
    """

    def __init__(
        self,
        model_name: str,
        dimension: int,
        chunker: Chunker,
        loader: ModelLoader = load_sentence_transformer,
        query_prefix: str = "",
        passage_prefix: str = "",
        batch_size: int = 32,
    ):
        self.model_name = model_name
        self.dimension = dimension
        self.chunker = chunker
        self.query_prefix = query_prefix
        self.passage_prefix = passage_prefix
        self.batch_size = batch_size
        self._model = _LazyModel(model_name, loader)

    def load(self) -> None:
        """Load the model now instead of on first use. Raises InitializationError."""
        self._model.get()

    def embed(self, texts: Sequence[str], is_query: bool = False) -> List[np.ndarray]:
        if is_query:
            inputs = [t.strip() for t in texts if t and t.strip()]
            prefix = self.query_prefix
        else:
            inputs = [chunk for t in texts for chunk in self.chunker.chunk(t)]
            prefix = self.passage_prefix

        if not inputs:
            return []

        if prefix:
            inputs = [f"{prefix}{t}" for t in inputs]

        model = self._model.get()
        try:
            raw = model.encode(
                inputs,
                batch_size=self.batch_size,
                convert_to_numpy=True,
                normalize_embeddings=True,
            )
        except Exception as e:
            raise GenerationError(f"{self.model_name} failed to embed {len(inputs)} texts: {e}") from e

        return _to_vectors(raw, len(inputs), self.dimension, self.model_name)

    def embed_query(self, query: str) -> np.ndarray:
        """Embed a single query string. Raises GenerationError when it is blank."""
        vectors = self.embed([query], is_query=True)
        if not vectors:
            raise GenerationError("Cannot embed an empty query")
        return vectors[0]


class ImageEmbedder:
    """
    Cross-modal (CLIP) pipeline: images and text queries land in the
    same vector space, so a text query can retrieve images.
    """

    def __init__(
        self,
        model_name: str,
        dimension: int,
        loader: ModelLoader = load_sentence_transformer,
    ):
        self.model_name = model_name
        self.dimension = dimension
        self._model = _LazyModel(model_name, loader)

    def embed_pil(self, image: Image.Image) -> np.ndarray:
        model = self._model.get()
        try:
            raw = model.encode([image], convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            raise GenerationError(f"{self.model_name} failed to embed image: {e}") from e
        return _to_vectors(raw, 1, self.dimension, self.model_name)[0]

    def embed_image(self, path: Path | str) -> np.ndarray:
        # Fail on a broken model before spending time decoding the file
        self._model.get()
        try:
            with Image.open(path) as img:
                rgb = img.convert("RGB")
        except OSError as e:
            raise GenerationError(f"Cannot open image {path}: {e}") from e
        return self.embed_pil(rgb)

    def embed_text_as_image_query(self, text: str) -> np.ndarray:
        text = text.strip()
        if not text:
            raise GenerationError("Cannot embed an empty query")
        model = self._model.get()
        try:
            raw = model.encode([text], convert_to_numpy=True, normalize_embeddings=True)
        except Exception as e:
            raise GenerationError(f"{self.model_name} failed to embed query: {e}") from e
        return _to_vectors(raw, 1, self.dimension, self.model_name)[0]


@dataclass
class EmbeddingModels:
    """The three model handles, constructed once and shared by reference."""
    text: TextEmbedder
    alternate: TextEmbedder
    image: ImageEmbedder

    @classmethod
    def from_config(
        cls,
        config: IndexerConfig | None = None,
        loader: ModelLoader = load_sentence_transformer,
        chunker: Chunker | None = None,
    ) -> "EmbeddingModels":
        config = config or get_config()
        chunker = chunker or Chunker(config)
        return cls(
            text=TextEmbedder(
                config.text_model,
                config.text_dim,
                chunker,
                loader=loader,
                batch_size=config.embedder_batch_size,
            ),
            alternate=TextEmbedder(
                config.alternate_model,
                config.alternate_dim,
                chunker,
                loader=loader,
                query_prefix="query: ",
                passage_prefix="passage: ",
                batch_size=config.embedder_batch_size,
            ),
            image=ImageEmbedder(config.image_model, config.image_dim, loader=loader),
        )
