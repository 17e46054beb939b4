"""
Pluggable embedding store factory.

Creates the embedding store named by ``[embedding] backend`` in the
configuration. ``lancedb`` and ``chroma`` are built in; other backends
register through the ``notemancy.backends`` entry point group.

External backend packages provide a factory function::

    def create_store(config: KbConfig) -> EmbeddingStoreProtocol:
        ...

and register it in their pyproject.toml::

    [project.entry-points."notemancy.backends"]
    my-backend = "my_package.backend:create_store"
"""

from .config import KbConfig
from .protocol import EmbeddingStoreProtocol


def create_embedding_store(config: KbConfig) -> EmbeddingStoreProtocol:
    """
    Create the configured embedding store.

    Raises:
        ValueError: If the backend name is unknown
        StorageIOError: If the backend cannot be opened
    """
    backend = config.embedding.backend
    if backend == "lancedb":
        from .stores.lance import LanceEmbeddingStore
        return LanceEmbeddingStore(
            config.embeddings_path,
            config.embedding.dimension,
            metric=config.embedding.metric,
            tuning=config.ann,
        )
    if backend == "chroma":
        from .stores.chroma import ChromaEmbeddingStore
        return ChromaEmbeddingStore(
            config.embeddings_path,
            config.embedding.dimension,
            metric=config.embedding.metric,
        )
    return _load_backend(backend, config)


def _load_backend(name: str, config: KbConfig) -> EmbeddingStoreProtocol:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="notemancy.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = ["lancedb", "chroma"] + [ep.name for ep in eps]
    raise ValueError(f"Unknown embedding backend: {name!r}. Available: {available}")
