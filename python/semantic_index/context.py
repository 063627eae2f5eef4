"""
Context - Wires the long-lived components together once at startup.

Model handles, the vector store and the run-stats store are created here
and passed by reference; nothing else constructs them.
"""

from dataclasses import dataclass
from typing import Optional

from .config import IndexerConfig, get_config
from .embedder import EmbeddingModels
from .models import InMemoryRunStatsStore, RunStatsStore
from .orchestrator import Orchestrator
from .search import SearchEngine
from .store import VectorStore


@dataclass
class IndexContext:
    config: IndexerConfig
    store: VectorStore
    models: EmbeddingModels
    stats_store: RunStatsStore
    orchestrator: Orchestrator
    search_engine: SearchEngine

    def close(self):
        self.orchestrator.close()
        self.store.close()


def create_context(
    config: Optional[IndexerConfig] = None,
    models: Optional[EmbeddingModels] = None,
    stats_store: Optional[RunStatsStore] = None,
) -> IndexContext:
    config = config or get_config()
    store = VectorStore(config)
    models = models or EmbeddingModels.from_config(config)
    stats_store = stats_store or InMemoryRunStatsStore()
    orchestrator = Orchestrator(config, store=store, models=models, stats_store=stats_store)
    return IndexContext(
        config=config,
        store=store,
        models=models,
        stats_store=stats_store,
        orchestrator=orchestrator,
        search_engine=SearchEngine(store, models, config),
    )
