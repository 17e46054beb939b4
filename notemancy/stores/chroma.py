"""
ChromaDB embedding store.

Each table is a Chroma collection with an HNSW index, which Chroma builds
incrementally; a table becomes indexed on its first non-empty insert and
stays indexed after its rows are deleted. That transition is recorded in
``notemancy_tables.json`` beside the Chroma files, since collection
metadata cannot be changed once ``hnsw:space`` is set.
Metadata is stored twice: flat keys, so ``where`` filters can match them,
and the full map under ``metadata_json``.

Filters are Chroma ``where`` mappings, e.g. ``{"category": "science"}``.
A JSON string holding such a mapping is accepted too.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

import chromadb
from chromadb.config import Settings

from ..ann import DistanceMetric, TableState
from ..errors import ConversionError, NotFoundError, StorageIOError
from ..types import DocumentEmbedding
from . import decode_metadata, encode_metadata, validate_embeddings, validate_query


logger = logging.getLogger(__name__)

_STATE_FILE = "notemancy_tables.json"

# notemancy metric -> Chroma hnsw:space
_SPACES = {
    DistanceMetric.COSINE: "cosine",
    DistanceMetric.L2: "l2",
    DistanceMetric.DOT: "ip",
}


class ChromaEmbeddingStore:
    """
    Embedding store backed by a persistent ChromaDB client.
    """

    def __init__(self, path: Path, dimension: int, *, metric: str = "cosine"):
        self._path = Path(path)
        self._dimension = dimension
        self._metric = DistanceMetric(metric)
        self._lock = threading.Lock()
        try:
            self._path.mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(
                path=str(self._path),
                settings=Settings(anonymized_telemetry=False, allow_reset=True),
            )
        except (OSError, ValueError, RuntimeError) as e:
            raise StorageIOError(f"Cannot open ChromaDB at {self._path}: {e}") from e
        self._state_path = self._path / _STATE_FILE
        self._indexed = self._load_indexed()

    def _load_indexed(self) -> set[str]:
        if not self._state_path.exists():
            return set()
        try:
            data = json.loads(self._state_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageIOError(f"Cannot read {self._state_path}: {e}") from e
        return set(data.get("indexed", []))

    def _save_indexed(self) -> None:
        try:
            self._state_path.write_text(
                json.dumps({"indexed": sorted(self._indexed)}), encoding="utf-8"
            )
        except OSError as e:
            raise StorageIOError(f"Cannot write {self._state_path}: {e}") from e

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def metric(self) -> str:
        return self._metric.value

    def _collection_names(self) -> list[str]:
        # Older clients return Collection objects, newer ones return names
        return [c if isinstance(c, str) else c.name for c in self._client.list_collections()]

    def _collection(self, name: str):
        if not self.table_exists(name):
            raise NotFoundError(f"Embedding table not found: {name}")
        return self._client.get_collection(name)

    # -------------------------------------------------------------------------
    # Table lifecycle
    # -------------------------------------------------------------------------

    def table_exists(self, name: str) -> bool:
        return name in self._collection_names()

    def create_table(self, name: str) -> None:
        with self._lock:
            if self.table_exists(name):
                return
            try:
                self._client.get_or_create_collection(
                    name=name,
                    metadata={"hnsw:space": _SPACES[self._metric]},
                )
            except ValueError as e:
                raise ConversionError(f"Invalid table name {name!r}: {e}") from e
            if name in self._indexed:
                self._indexed.discard(name)
                self._save_indexed()
            logger.info("Created embedding table %s (dim=%d)", name, self._dimension)

    def drop_table(self, name: str) -> None:
        with self._lock:
            if not self.table_exists(name):
                raise NotFoundError(f"Embedding table not found: {name}")
            self._client.delete_collection(name)
            if name in self._indexed:
                self._indexed.discard(name)
                self._save_indexed()
            logger.info("Dropped embedding table %s", name)

    def table_state(self, name: str) -> TableState:
        if not self.table_exists(name):
            return TableState.ABSENT
        if name in self._indexed:
            return TableState.INDEXED
        # Populated by an older run with no state file
        if self.count(name) > 0:
            with self._lock:
                self._mark_indexed(name)
            return TableState.INDEXED
        return TableState.CREATED

    def _mark_indexed(self, name: str) -> None:
        if name not in self._indexed:
            self._indexed.add(name)
            self._save_indexed()

    def count(self, name: str) -> int:
        return self._collection(name).count()

    def list_ids(self, name: str) -> list[str]:
        return list(self._collection(name).get(include=[])["ids"])

    def optimize(self, name: str) -> None:
        # HNSW is maintained on every write
        self._collection(name)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    @staticmethod
    def _flat_metadata(metadata: dict[str, str]) -> dict[str, Any]:
        flat: dict[str, Any] = {k: str(v) for k, v in metadata.items() if k != "metadata_json"}
        flat["metadata_json"] = encode_metadata(metadata)
        return flat

    def add_embeddings(self, name: str, embeddings: list[DocumentEmbedding]) -> None:
        validate_embeddings(embeddings, self._dimension)
        if not embeddings:
            return
        with self._lock:
            collection = self._collection(name)
            try:
                collection.upsert(
                    ids=[e.id for e in embeddings],
                    embeddings=[[float(x) for x in e.vector] for e in embeddings],
                    metadatas=[self._flat_metadata(e.metadata) for e in embeddings],
                )
            except ValueError as e:
                raise ConversionError(f"Chroma rejected batch for {name}: {e}") from e
            self._mark_indexed(name)

    def delete_embeddings(self, name: str, ids: list[str]) -> None:
        if not ids:
            return
        with self._lock:
            self._collection(name).delete(ids=list(ids))

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    @staticmethod
    def _where(filter: Any) -> Optional[dict]:
        if filter is None or filter == {}:
            return None
        if isinstance(filter, str):
            try:
                filter = json.loads(filter)
            except json.JSONDecodeError as e:
                raise ConversionError(f"Chroma filters are where-mappings: {e}") from e
        if not isinstance(filter, dict):
            raise ConversionError(f"Chroma filters are where-mappings, got {type(filter).__name__}")
        return filter

    def similarity_search(
        self,
        name: str,
        query_vector: list[float],
        limit: int,
        filter: Optional[Any] = None,
    ) -> list[tuple[DocumentEmbedding, float]]:
        vector = validate_query(query_vector, self._dimension)
        where = self._where(filter)
        collection = self._collection(name)
        total = collection.count()
        if limit <= 0 or total == 0:
            return []

        try:
            result = collection.query(
                query_embeddings=[vector],
                n_results=min(limit, total),
                where=where,
                include=["embeddings", "metadatas", "distances"],
            )
        except ValueError as e:
            raise ConversionError(f"Search on {name} failed: {e}") from e

        ids = result["ids"][0] if result["ids"] else []
        vectors = result["embeddings"][0] if result.get("embeddings") is not None else []
        metadatas = result["metadatas"][0] if result.get("metadatas") else []
        distances = result["distances"][0] if result.get("distances") else []

        pairs = []
        for i, id in enumerate(ids):
            meta = metadatas[i] if i < len(metadatas) and metadatas[i] else {}
            if "metadata_json" in meta:
                metadata = decode_metadata(meta["metadata_json"])
            else:
                metadata = {k: str(v) for k, v in meta.items()}
            vec = vectors[i] if i < len(vectors) else []
            embedding = DocumentEmbedding(
                id=id,
                vector=[float(x) for x in vec],
                metadata=metadata,
            )
            pairs.append((embedding, float(distances[i])))
        pairs.sort(key=lambda pair: pair[1])
        return pairs[:limit]

    def close(self) -> None:
        pass
