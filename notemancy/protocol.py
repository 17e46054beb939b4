"""
Protocol definition for embedding stores.

Every vector backend (LanceDB, ChromaDB, or one registered through the
``notemancy.backends`` entry point group) satisfies the same contract and
passes the same conformance tests, so callers never depend on a concrete
backend.
"""

from typing import Any, Optional, Protocol, runtime_checkable

from .ann import TableState
from .types import DocumentEmbedding


@runtime_checkable
class EmbeddingStoreProtocol(Protocol):
    """
    Persists document vectors in named tables and searches them.

    Tables hold ``id`` (unique), ``vector`` (fixed length == ``dimension``)
    and ``metadata_json``.
    """

    @property
    def dimension(self) -> int:
        """Configured vector length; enforced on insert and query."""
        ...

    @property
    def metric(self) -> str:
        """Distance metric reported by similarity_search ("cosine", "l2", "dot")."""
        ...

    def create_table(self, name: str) -> None:
        """Create a table. No-op if it already exists."""
        ...

    def table_exists(self, name: str) -> bool: ...

    def drop_table(self, name: str) -> None:
        """Drop a table. Raises NotFoundError if absent."""
        ...

    def table_state(self, name: str) -> TableState: ...

    def count(self, name: str) -> int: ...

    def list_ids(self, name: str) -> list[str]:
        """Ids of every embedding in the table."""
        ...

    def add_embeddings(self, name: str, embeddings: list[DocumentEmbedding]) -> None:
        """
        Insert a batch of embeddings.

        Every record is validated first; a wrong-length vector raises
        DimensionMismatchError and nothing from the batch is written.
        A created table moves to TableState.INDEXED once the backend has
        built its approximate index: Chroma on the first non-empty insert,
        LanceDB once the table holds enough rows to train one.
        """
        ...

    def delete_embeddings(self, name: str, ids: list[str]) -> None:
        """Delete embeddings by id. Unknown ids are ignored."""
        ...

    def similarity_search(
        self,
        name: str,
        query_vector: list[float],
        limit: int,
        filter: Optional[Any] = None,
    ) -> list[tuple[DocumentEmbedding, float]]:
        """
        Nearest neighbours of ``query_vector``.

        Returns at most ``limit`` (embedding, distance) pairs in ascending
        distance, i.e. descending similarity. ``filter`` is backend-native.

        Raises:
            DimensionMismatchError: If the query length differs from ``dimension``
            NotFoundError: If the table does not exist
        """
        ...

    def optimize(self, name: str) -> None:
        """Rebuild the approximate index for the table's current size."""
        ...

    def close(self) -> None: ...
