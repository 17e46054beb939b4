"""
LanceDB embedding store.

Each table has the columns ``id``, ``vector`` (fixed-size float32 list)
and ``metadata_json``. PQ training needs ``IndexTuning.min_rows_for_index``
vectors, so a table is searched exhaustively (state CREATED) until an
insert brings it to that size. That insert builds an IVF_PQ index sized
from the row count and moves the table to INDEXED; later inserts leave
the index alone until optimize() is called. A table reopened from disk is
INDEXED exactly when it carries a vector index.

Filters are SQL predicates, e.g. ``metadata_json LIKE '%science%'``.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Optional

import lancedb
import pyarrow as pa

from ..ann import (
    DistanceMetric,
    TableState,
    estimate_partitions,
    estimate_probes,
    estimate_sub_vectors,
)
from ..config import IndexTuning
from ..errors import ConversionError, NotFoundError, StorageIOError
from ..types import DocumentEmbedding
from . import decode_metadata, encode_metadata, validate_embeddings, validate_query


logger = logging.getLogger(__name__)

# Errors the lance bindings raise for I/O and query failures
_LANCE_ERRORS = (OSError, RuntimeError, ValueError)


def sql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class LanceEmbeddingStore:
    """
    Embedding store backed by a local LanceDB directory.
    """

    def __init__(
        self,
        path: Path,
        dimension: int,
        *,
        metric: str = "cosine",
        tuning: Optional[IndexTuning] = None,
    ):
        """
        Args:
            path: Directory holding the LanceDB tables
            dimension: Vector length enforced on insert and query
            metric: Distance metric for index build and search
            tuning: ANN sizing bounds

        Raises:
            StorageIOError: If the database cannot be opened
        """
        self._path = Path(path)
        self._dimension = dimension
        self._metric = DistanceMetric(metric).value
        self._tuning = tuning or IndexTuning()
        self._tables: dict[str, Any] = {}
        self._states: dict[str, TableState] = {}
        self._partitions: dict[str, int] = {}
        self._lock = threading.Lock()
        try:
            self._path.mkdir(parents=True, exist_ok=True)
            self._db = lancedb.connect(str(self._path))
        except _LANCE_ERRORS as e:
            raise StorageIOError(f"Cannot open LanceDB at {self._path}: {e}") from e

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def metric(self) -> str:
        return self._metric

    def _schema(self) -> pa.Schema:
        return pa.schema([
            pa.field("id", pa.string(), nullable=False),
            pa.field("vector", pa.list_(pa.float32(), self._dimension)),
            pa.field("metadata_json", pa.string()),
        ])

    def _open(self, name: str):
        table = self._tables.get(name)
        if table is not None:
            return table
        if not self.table_exists(name):
            raise NotFoundError(f"Embedding table not found: {name}")
        try:
            table = self._db.open_table(name)
        except _LANCE_ERRORS as e:
            raise StorageIOError(f"Cannot open table {name}: {e}") from e
        self._tables[name] = table
        return table

    # -------------------------------------------------------------------------
    # Table lifecycle
    # -------------------------------------------------------------------------

    def table_exists(self, name: str) -> bool:
        return name in self._db.table_names()

    def create_table(self, name: str) -> None:
        with self._lock:
            if self.table_exists(name):
                return
            try:
                self._tables[name] = self._db.create_table(name, schema=self._schema(), exist_ok=True)
            except _LANCE_ERRORS as e:
                raise StorageIOError(f"Cannot create table {name}: {e}") from e
            self._states[name] = TableState.CREATED
            logger.info("Created embedding table %s (dim=%d)", name, self._dimension)

    def drop_table(self, name: str) -> None:
        with self._lock:
            if not self.table_exists(name):
                raise NotFoundError(f"Embedding table not found: {name}")
            self._db.drop_table(name)
            self._tables.pop(name, None)
            self._states.pop(name, None)
            self._partitions.pop(name, None)
            logger.info("Dropped embedding table %s", name)

    def table_state(self, name: str) -> TableState:
        if not self.table_exists(name):
            return TableState.ABSENT
        state = self._states.get(name)
        if state is None:
            # Opened from disk
            indexed = bool(self._open(name).list_indices())
            state = TableState.INDEXED if indexed else TableState.CREATED
            self._states[name] = state
        return state

    def count(self, name: str) -> int:
        return self._open(name).count_rows()

    def list_ids(self, name: str) -> list[str]:
        table = self._open(name)
        try:
            return table.to_arrow().column("id").to_pylist()
        except _LANCE_ERRORS as e:
            raise StorageIOError(f"Cannot read ids from {name}: {e}") from e

    # -------------------------------------------------------------------------
    # Index management
    # -------------------------------------------------------------------------

    def _build_index(self, name: str, table) -> bool:
        """Build (or rebuild) the IVF_PQ index. False if the table is too small."""
        rows = table.count_rows()
        if rows < self._tuning.min_rows_for_index:
            logger.debug("Table %s has %d rows; using exhaustive search", name, rows)
            return False
        partitions = min(estimate_partitions(rows, self._tuning), rows)
        sub_vectors = estimate_sub_vectors(self._dimension)
        logger.info(
            "Building IVF_PQ index on %s: rows=%d partitions=%d sub_vectors=%d",
            name, rows, partitions, sub_vectors,
        )
        try:
            table.create_index(
                metric=self._metric,
                num_partitions=partitions,
                num_sub_vectors=sub_vectors,
                vector_column_name="vector",
                replace=True,
            )
        except _LANCE_ERRORS as e:
            raise StorageIOError(f"Cannot build index on {name}: {e}") from e
        self._partitions[name] = partitions
        self._states[name] = TableState.INDEXED
        return True

    def _probes(self, name: str, table) -> Optional[int]:
        partitions = self._partitions.get(name)
        if partitions is None and table.list_indices():
            partitions = estimate_partitions(table.count_rows(), self._tuning)
            self._partitions[name] = partitions
        if partitions is None:
            return None
        return estimate_probes(partitions, self._tuning)

    def optimize(self, name: str) -> None:
        """Compact the table and rebuild its index for the current row count."""
        with self._lock:
            table = self._open(name)
            try:
                table.optimize()
            except _LANCE_ERRORS as e:
                raise StorageIOError(f"Cannot optimize table {name}: {e}") from e
            self._build_index(name, table)

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_embeddings(self, name: str, embeddings: list[DocumentEmbedding]) -> None:
        """
        Upsert embeddings. Existing rows with the same ids are replaced.

        While the table is unindexed, each insert checks whether it has
        reached ``min_rows_for_index`` and builds the index once it has.

        Raises:
            DimensionMismatchError: If any vector has the wrong length
            NotFoundError: If the table does not exist
        """
        validate_embeddings(embeddings, self._dimension)
        if not embeddings:
            return
        rows = [
            {
                "id": e.id,
                "vector": [float(x) for x in e.vector],
                "metadata_json": encode_metadata(e.metadata),
            }
            for e in embeddings
        ]
        with self._lock:
            table = self._open(name)
            unindexed = self.table_state(name) is TableState.CREATED
            try:
                table.delete(self._id_predicate([e.id for e in embeddings]))
                table.add(rows)
            except _LANCE_ERRORS as e:
                raise StorageIOError(f"Cannot write to table {name}: {e}") from e
            if unindexed:
                self._build_index(name, table)

    def _id_predicate(self, ids: list[str]) -> str:
        return f"id IN ({', '.join(sql_quote(i) for i in ids)})"

    def delete_embeddings(self, name: str, ids: list[str]) -> None:
        if not ids:
            return
        with self._lock:
            table = self._open(name)
            try:
                table.delete(self._id_predicate(ids))
            except _LANCE_ERRORS as e:
                raise StorageIOError(f"Cannot delete from table {name}: {e}") from e

    # -------------------------------------------------------------------------
    # Query Operations
    # -------------------------------------------------------------------------

    def similarity_search(
        self,
        name: str,
        query_vector: list[float],
        limit: int,
        filter: Optional[str] = None,
    ) -> list[tuple[DocumentEmbedding, float]]:
        vector = validate_query(query_vector, self._dimension)
        if filter is not None and not isinstance(filter, str):
            raise ConversionError(f"LanceDB filters are SQL strings, got {type(filter).__name__}")
        table = self._open(name)
        if limit <= 0:
            return []

        query = (
            table.search(vector, vector_column_name="vector")
            .distance_type(self._metric)
            .limit(limit)
        )
        probes = self._probes(name, table)
        if probes is not None:
            query = query.nprobes(probes)
        if filter:
            query = query.where(filter, prefilter=True)

        try:
            rows = query.to_list()
        except _LANCE_ERRORS as e:
            raise StorageIOError(f"Search on {name} failed: {e}") from e

        results = []
        for row in rows:
            embedding = DocumentEmbedding(
                id=row["id"],
                vector=[float(x) for x in row["vector"]],
                metadata=decode_metadata(row.get("metadata_json")),
            )
            results.append((embedding, float(row["_distance"])))
        results.sort(key=lambda pair: pair[1])
        return results[:limit]

    def close(self) -> None:
        self._tables.clear()
