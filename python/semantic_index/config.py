"""
Indexing Configuration - Centralized settings for the semantic index.

Uses environment variables with sensible defaults. All paths are resolved
to absolute paths for reliability.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Set, Tuple


@dataclass
class IndexerConfig:
    """
    Configuration for the semantic index.

    The vector store defaults to ~/.semantic_index/lancedb.
    Chunking and search defaults match the shipped embedding models.
    """

    # --- Paths ---
    roots: List[Path] = field(default_factory=lambda: [
        Path.home() / "Documents",
        Path.home() / "Desktop",
        Path.home() / "Pictures",
    ])
    db_path: Path = field(
        default_factory=lambda: Path.home() / ".semantic_index" / "lancedb"
    )
    downloads_path: Path = field(default_factory=lambda: Path.home() / "Downloads")

    # --- Concurrency ---
    executor_workers: int = 8   # Thread pool for extraction, inference and DB calls
    batch_size: int = 10        # Items in flight per pipeline

    # --- Skip Patterns ---
    excluded_dirs: Set[str] = field(default_factory=lambda: {
        "node_modules", "Library", "System",
        ".git", ".cache", ".vscode", ".github",
        "TMWPix",
    })
    excluded_suffixes: Tuple[str, ...] = (
        ".app", ".bundle", ".framework", ".kext", ".plugin",
    )

    # --- Supported File Types ---
    text_extensions: Set[str] = field(default_factory=lambda: {".pdf", ".txt", ".md"})
    image_extensions: Set[str] = field(default_factory=lambda: {
        ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp",
    })
    max_text_length: int = 100_000

    # --- Chunking ---
    min_chunk_chars: int = 500
    max_chunk_chars: int = 1500
    max_chunks: int = 100

    # --- Models ---
    text_model: str = "BAAI/bge-small-en-v1.5"
    text_dim: int = 384
    alternate_model: str = "intfloat/multilingual-e5-small"
    alternate_dim: int = 384
    image_model: str = "clip-ViT-B-32"
    image_dim: int = 512
    embedder_batch_size: int = 32

    # --- Language routing ---
    alternate_script_threshold: float = 0.3  # Share of letters in the Ethiopic block
    language_sample_chars: int = 2000

    # --- Search ---
    default_search_limit: int = 20
    default_min_score: float = 0.6

    def __post_init__(self):
        """Ensure all paths are absolute."""
        self.db_path = Path(self.db_path).expanduser().resolve()
        self.downloads_path = Path(self.downloads_path).expanduser().resolve()
        self.roots = [Path(p).expanduser().resolve() for p in self.roots]
        self.text_extensions = {e.lower() for e in self.text_extensions}
        self.image_extensions = {e.lower() for e in self.image_extensions}

    @property
    def supported_extensions(self) -> Set[str]:
        return self.text_extensions | self.image_extensions

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """
        Create config from environment variables.

        Supported env vars:
            SEMINDEX_ROOTS: Comma-separated list of paths
            SEMINDEX_DB_PATH: Path to the LanceDB directory
            SEMINDEX_WORKERS: Thread pool size
            SEMINDEX_BATCH_SIZE: Items in flight per pipeline
            SEMINDEX_TEXT_MODEL / SEMINDEX_ALTERNATE_MODEL / SEMINDEX_IMAGE_MODEL
            SEMINDEX_MIN_SCORE: Default search threshold
        """
        config = cls()

        if roots := os.environ.get("SEMINDEX_ROOTS"):
            config.roots = [Path(p.strip()) for p in roots.split(",") if p.strip()]

        if db_path := os.environ.get("SEMINDEX_DB_PATH"):
            config.db_path = Path(db_path)

        if workers := os.environ.get("SEMINDEX_WORKERS"):
            config.executor_workers = int(workers)

        if batch := os.environ.get("SEMINDEX_BATCH_SIZE"):
            config.batch_size = int(batch)

        if model := os.environ.get("SEMINDEX_TEXT_MODEL"):
            config.text_model = model

        if model := os.environ.get("SEMINDEX_ALTERNATE_MODEL"):
            config.alternate_model = model

        if model := os.environ.get("SEMINDEX_IMAGE_MODEL"):
            config.image_model = model

        if min_score := os.environ.get("SEMINDEX_MIN_SCORE"):
            config.default_min_score = float(min_score)

        config.__post_init__()
        return config


# Singleton default config
_default_config: IndexerConfig | None = None


def get_config() -> IndexerConfig:
    """Get the default configuration (singleton)."""
    global _default_config
    if _default_config is None:
        _default_config = IndexerConfig.from_env()
    return _default_config


def set_config(config: IndexerConfig) -> None:
    """Override the default configuration (for testing)."""
    global _default_config
    _default_config = config
