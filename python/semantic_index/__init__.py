"""
semantic_index - Local semantic indexing and retrieval for personal files.

Modules:
    - config: Centralized configuration
    - errors: Exception taxonomy and per-file error policies
    - extractor: File classification, text extraction, language routing
    - hasher: xxHash content fingerprints
    - chunker: Boundary-aligned text chunking
    - embedder: Text, alternate-script and CLIP image pipelines
    - store: LanceDB tables with path-keyed upsert/delete
    - search: Multimodal nearest-neighbour search and ranking
    - scanner: Directory walk with exclusion rules
    - orchestrator: Batch indexing runs (main entry point)
    - watcher: Incremental sync from filesystem events
    - commands: Shell-facing command surface
    - repair: Table drop/recreate tool
    - benchmark: Text model timing over sample files

Usage:
    from semantic_index import create_context

    context = create_context()
    stats = await context.orchestrator.index_tree(Path.home() / "Documents")
    results = context.search_engine.search("tax receipts 2023")
"""

from .context import IndexContext, create_context
from .orchestrator import Orchestrator
from .search import SearchEngine

__all__ = ["IndexContext", "Orchestrator", "SearchEngine", "create_context"]
