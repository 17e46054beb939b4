"""
Shared pytest fixtures for notemancy tests.

Provides a mock embedding provider and an in-memory embedding store so
tests never load an ML model or a vector database.
"""

import hashlib
import math
from pathlib import Path
from typing import Any, Optional

import pytest

from notemancy.ann import TableState
from notemancy.config import KbConfig, VaultConfig
from notemancy.errors import ConversionError, NotFoundError
from notemancy.metadata_store import MetadataStore
from notemancy.stores import validate_embeddings, validate_query
from notemancy.types import DocumentEmbedding


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Hashes each word into a bucket, so texts sharing words get similar
    vectors - no ML model loading.
    """

    model_name = "mock-model"

    def __init__(self, dimension: int = 32):
        self._dimension = dimension
        self.embed_calls = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        vector = [0.0] * self._dimension
        for word in text.lower().split():
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self._dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


class MemoryEmbeddingStore:
    """In-memory embedding store with exact cosine search.

    Filters are dicts of metadata key -> required value.
    """

    metric = "cosine"

    def __init__(self, dimension: int = 32):
        self._dimension = dimension
        self._tables: dict[str, dict[str, DocumentEmbedding]] = {}
        self._indexed: set[str] = set()

    @property
    def dimension(self) -> int:
        return self._dimension

    def _table(self, name: str) -> dict[str, DocumentEmbedding]:
        if name not in self._tables:
            raise NotFoundError(f"Embedding table not found: {name}")
        return self._tables[name]

    def create_table(self, name: str) -> None:
        self._tables.setdefault(name, {})

    def table_exists(self, name: str) -> bool:
        return name in self._tables

    def drop_table(self, name: str) -> None:
        self._table(name)
        del self._tables[name]
        self._indexed.discard(name)

    def table_state(self, name: str) -> TableState:
        if name not in self._tables:
            return TableState.ABSENT
        return TableState.INDEXED if name in self._indexed else TableState.CREATED

    def count(self, name: str) -> int:
        return len(self._table(name))

    def list_ids(self, name: str) -> list[str]:
        return list(self._table(name))

    def add_embeddings(self, name: str, embeddings: list[DocumentEmbedding]) -> None:
        validate_embeddings(embeddings, self._dimension)
        table = self._table(name)
        for e in embeddings:
            table[e.id] = DocumentEmbedding(e.id, list(e.vector), dict(e.metadata))
        if embeddings:
            self._indexed.add(name)

    def delete_embeddings(self, name: str, ids: list[str]) -> None:
        table = self._table(name)
        for id in ids:
            table.pop(id, None)

    def similarity_search(
        self,
        name: str,
        query_vector: list[float],
        limit: int,
        filter: Optional[Any] = None,
    ) -> list[tuple[DocumentEmbedding, float]]:
        query = validate_query(query_vector, self._dimension)
        if filter is not None and not isinstance(filter, dict):
            raise ConversionError("Memory store filters are dicts")
        table = self._table(name)
        qnorm = math.sqrt(sum(x * x for x in query)) or 1.0
        results = []
        for e in table.values():
            if filter and any(e.metadata.get(k) != v for k, v in filter.items()):
                continue
            enorm = math.sqrt(sum(x * x for x in e.vector)) or 1.0
            cosine = sum(a * b for a, b in zip(query, e.vector)) / (qnorm * enorm)
            results.append((e, 1.0 - cosine))
        results.sort(key=lambda pair: pair[1])
        return results[:max(limit, 0)]

    def optimize(self, name: str) -> None:
        self._table(name)

    def close(self) -> None:
        pass


@pytest.fixture
def mock_embedding_provider():
    return MockEmbeddingProvider()


@pytest.fixture
def memory_store():
    return MemoryEmbeddingStore()


@pytest.fixture
def metadata_store(tmp_path):
    store = MetadataStore(tmp_path / "db" / "metadata.db")
    yield store
    store.close()


def _write_file(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def write_file():
    """Write a UTF-8 file, creating parent directories."""
    return _write_file


@pytest.fixture
def memory_store_factory():
    return MemoryEmbeddingStore


@pytest.fixture
def provider_factory():
    return MockEmbeddingProvider


@pytest.fixture
def vault_root(tmp_path):
    """A vault at <tmp>/vaults/main with the indicator segment 'main'."""
    root = tmp_path / "vaults" / "main"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def kb_config(tmp_path, vault_root):
    """Config with one default vault 'main' and indicator 'main'."""
    config = KbConfig(config_dir=tmp_path / "config", indicator="main")
    config.vaults = [VaultConfig(name="main", paths=[vault_root], default=True)]
    config.embedding.dimension = 32
    return config


@pytest.fixture
def kb(kb_config, memory_store, mock_embedding_provider):
    """KnowledgeBase wired to the in-memory store and mock provider."""
    from notemancy.api import KnowledgeBase
    knowledge_base = KnowledgeBase(
        kb_config,
        embedding_store=memory_store,
        embedding_provider=mock_embedding_provider,
    )
    yield knowledge_base
    knowledge_base.close()