"""
Core API for notemancy.

KnowledgeBase ties the stores together: it runs scans and indexing, and
answers lexical, semantic, and "related to this document" queries,
resolving hits back to pagetable rows.

Example:
    kb = KnowledgeBase.open(Path("~/.notemancy").expanduser())
    kb.scan()
    kb.index_embeddings()
    kb.rebuild_full_text()
    for hit in kb.search("wiki"):
        print(hit.path, hit.snippet)
"""

import logging
import math
import mimetypes
from pathlib import Path
from typing import Any, Callable, Optional

from .ann import TableState, distance_to_similarity
from .backend import create_embedding_store
from .config import KbConfig, load_or_create_config
from .errors import NotFoundError, StorageIOError
from .fulltext import FullTextIndex
from .indexer import (
    IndexReport,
    build_full_text_index,
    index_documents,
    read_document,
    remove_embeddings,
)
from .logging_config import attach_ops_log, detach_ops_log
from .metadata_store import MetadataStore
from .protocol import EmbeddingStoreProtocol
from .providers import EmbeddingProvider, create_embedding_provider
from .scanner import ScanReport, Scanner
from .types import PageContent, PageRecord, SearchResult, SimilarDocument


logger = logging.getLogger(__name__)


class KnowledgeBase:
    """
    Scanning, indexing, and retrieval over the configured vaults.

    Stores are opened from the config unless passed in. The embedding
    store and model are created on first use, so lexical-only work never
    loads them.
    """

    def __init__(
        self,
        config: KbConfig,
        *,
        metadata_store: Optional[MetadataStore] = None,
        full_text_index: Optional[FullTextIndex] = None,
        embedding_store: Optional[EmbeddingStoreProtocol] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ):
        self.config = config
        self._metadata_store = metadata_store or MetadataStore(config.metadata_db_path)
        self._full_text_index = full_text_index or FullTextIndex(
            config.fulltext_db_path, snippet_length=config.search.snippet_length,
        )
        self._embedding_store = embedding_store
        self._embedding_provider = embedding_provider
        self._log_handler = None

    @classmethod
    def open(cls, config_dir: Path, **kwargs) -> "KnowledgeBase":
        """Load (or create) the config in ``config_dir`` and open its stores."""
        config = load_or_create_config(Path(config_dir))
        kb = cls(config, **kwargs)
        kb._log_handler = attach_ops_log(config.config_dir)
        return kb

    # -------------------------------------------------------------------------
    # Components
    # -------------------------------------------------------------------------

    @property
    def metadata_store(self) -> MetadataStore:
        return self._metadata_store

    @property
    def full_text_index(self) -> FullTextIndex:
        return self._full_text_index

    @property
    def embedding_store(self) -> EmbeddingStoreProtocol:
        if self._embedding_store is None:
            self._embedding_store = create_embedding_store(self.config)
        return self._embedding_store

    @property
    def embedding_provider(self) -> EmbeddingProvider:
        if self._embedding_provider is None:
            self._embedding_provider = create_embedding_provider(self.config.embedding)
        return self._embedding_provider

    @property
    def table_name(self) -> str:
        return self.config.embedding.table_name

    # -------------------------------------------------------------------------
    # Synchronization
    # -------------------------------------------------------------------------

    def scan(self, attachments: bool = True) -> tuple[ScanReport, Optional[ScanReport]]:
        """Scan documents (and attachments) of the resolved vaults."""
        scanner = Scanner.from_config(self.config, self._metadata_store)
        _, documents = scanner.scan_markdown_files()
        images = None
        if attachments:
            _, images = scanner.scan_images()
        return documents, images

    def cleanup(self) -> list[str]:
        """
        Remove records of files that no longer exist.

        Stale pages are also dropped from the full-text index and, when the
        embedding table exists, from the embedding store.
        """
        before = {record.path: record.virtual_path for record in self._metadata_store.get_file_tree()}
        removed = self._metadata_store.cleanup_stale_records()
        stale_pages = [(before[path], path) for path in removed if path in before]
        for _, path in stale_pages:
            self._full_text_index.remove_document(path)
        if stale_pages and self._embedding_store_available():
            remove_embeddings(self.embedding_store, self.table_name, stale_pages)
        logger.info("Cleanup removed %d stale records", len(removed))
        return removed

    def _embedding_store_available(self) -> bool:
        return self._embedding_store is not None or self.config.embeddings_path.exists()

    def index_embeddings(
        self,
        *,
        optimize: bool = False,
        on_progress: Optional[Callable[[int, int, int, int], None]] = None,
    ) -> IndexReport:
        """Embed every markdown document into the embedding table."""
        report = index_documents(
            self._metadata_store,
            self.embedding_store,
            self.embedding_provider,
            self.table_name,
            batch_size=self.config.embedding.batch_size,
            on_progress=on_progress,
        )
        if optimize:
            self.embedding_store.optimize(self.table_name)
        return report

    def optimize(self) -> None:
        """Rebuild the approximate index for the table's current size."""
        self.embedding_store.optimize(self.table_name)

    def rebuild_full_text(self) -> IndexReport:
        return build_full_text_index(self._full_text_index, self._metadata_store)

    def update_document(self, path: str) -> None:
        """Refresh one file in the full-text index."""
        self._full_text_index.update_document(path)

    def remove_document(self, path: str) -> bool:
        """Drop one file from the full-text index."""
        return self._full_text_index.remove_document(path)

    # -------------------------------------------------------------------------
    # Documents
    # -------------------------------------------------------------------------

    def get_page_content(self, virtual_path: str) -> PageContent:
        """
        Raw text of the page at ``virtual_path`` with its stored frontmatter.

        Raises:
            NotFoundError: If no page has that virtual path, or its file is gone
            StorageIOError: If the file can't be read
        """
        page = self._metadata_store.get_page_by_virtual_path(virtual_path)
        if page is None:
            raise NotFoundError(f"No page with virtual path {virtual_path!r}")
        return PageContent(content=read_document(page.path), metadata=page.metadata_dict)

    def get_attachment_content(self, virtual_path: str) -> tuple[bytes, str]:
        """
        Bytes and MIME type of the attachment at ``virtual_path``.

        The type is guessed from the file extension, falling back to
        ``application/octet-stream``.
        """
        attachment = self._metadata_store.get_attachment_by_virtual_path(virtual_path)
        if attachment is None:
            raise NotFoundError(f"No attachment with virtual path {virtual_path!r}")
        try:
            data = Path(attachment.path).read_bytes()
        except FileNotFoundError as e:
            raise NotFoundError(f"File not found: {attachment.path}") from e
        except OSError as e:
            raise StorageIOError(f"Cannot read {attachment.path}: {e}") from e
        mime, _ = mimetypes.guess_type(attachment.path)
        return data, mime or "application/octet-stream"

    def update_document_content(
        self,
        content: str,
        *,
        path: Optional[str] = None,
        virtual_path: Optional[str] = None,
    ) -> str:
        """
        Overwrite a recorded markdown file and refresh its full-text entry.

        Exactly one identifier is needed; ``path`` wins when both are given.
        Only files already in the pagetable can be written.

        Returns:
            The physical path written

        Raises:
            ValueError: If neither identifier is given
            NotFoundError: If no record matches, or the file no longer exists
            StorageIOError: If the write fails
        """
        if path is None and virtual_path is None:
            raise ValueError("Either path or virtual_path must be provided")
        if path is not None:
            page = self._metadata_store.get_page_by_path(path)
        else:
            page = self._metadata_store.get_page_by_virtual_path(virtual_path)
        if page is None:
            raise NotFoundError(f"No document record for {path or virtual_path!r}")
        file_path = Path(page.path)
        if not file_path.is_file():
            raise NotFoundError(f"File not found: {page.path}")
        try:
            file_path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise StorageIOError(f"Cannot write {page.path}: {e}") from e
        self._full_text_index.add_document(page.path, content)
        logger.info("Updated %s", page.path)
        return page.path

    # -------------------------------------------------------------------------
    # Retrieval
    # -------------------------------------------------------------------------

    def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """Lexical search over titles and bodies."""
        return self._full_text_index.search(query, limit)

    def resolve_document(self, path: str) -> PageRecord:
        """
        Find the pagetable row for a physical or virtual path.

        Raises:
            NotFoundError: If neither lookup matches
        """
        page = self._metadata_store.get_page_by_path(path)
        if page is None:
            absolute = str(Path(path).expanduser().absolute())
            page = self._metadata_store.get_page_by_path(absolute)
        if page is None:
            page = self._metadata_store.get_page_by_virtual_path(path)
        if page is None:
            raise NotFoundError(f"No document at {path!r}")
        return page

    def _similar(
        self,
        vector: list[float],
        limit: Optional[int],
        threshold: Optional[float],
        filter: Any,
        exclude_path: Optional[str] = None,
    ) -> list[SimilarDocument]:
        search = self.config.search
        limit = search.max_results if limit is None else limit
        threshold = search.similarity_threshold if threshold is None else threshold
        if limit <= 0:
            return []

        candidates = math.ceil(limit * search.overfetch)
        if exclude_path is not None:
            candidates += 1
        store = self.embedding_store
        raw = store.similarity_search(self.table_name, vector, candidates, filter)

        hits = []
        for embedding, distance in raw:
            if exclude_path is not None and embedding.physical_path == exclude_path:
                continue
            similarity = distance_to_similarity(store.metric, distance)
            if similarity < threshold:
                continue
            hits.append(SimilarDocument(
                path=embedding.physical_path,
                virtual_path=embedding.virtual_path,
                similarity=similarity,
                embedding=embedding,
                page=self._metadata_store.get_page_by_path(embedding.physical_path),
            ))
        hits.sort(key=lambda hit: hit.similarity, reverse=True)

        # One hit per file, the best-scoring one
        seen: set[str] = set()
        unique = []
        for hit in hits:
            if hit.path in seen:
                continue
            seen.add(hit.path)
            unique.append(hit)
        return unique[:limit]

    def similarity_search(
        self,
        text: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
        filter: Any = None,
    ) -> list[SimilarDocument]:
        """
        Semantic search for documents similar to ``text``.

        More candidates than ``limit`` are requested from the store to make
        up for approximate recall; results below ``threshold`` are dropped
        and the rest sorted by descending similarity.

        Raises:
            NotFoundError: If nothing has been indexed yet
            DimensionMismatchError: If the model and store dimensions differ
        """
        vector = self.embedding_provider.embed(text)
        return self._similar(vector, limit, threshold, filter)

    def find_related(
        self,
        path: str,
        limit: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> list[SimilarDocument]:
        """
        Documents semantically related to the one at ``path``.

        ``path`` may be physical or virtual. The document itself is never
        among the results.
        """
        page = self.resolve_document(path)
        content = read_document(page.path)
        vector = self.embedding_provider.embed(content)
        return self._similar(vector, limit, threshold, None, exclude_path=page.path)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def info(self) -> dict[str, Any]:
        info: dict[str, Any] = {
            "config_dir": str(self.config.config_dir),
            "indicator": self.config.indicator,
            "vaults": self._metadata_store.vault_counts(),
            "attachments": self._metadata_store.count_attachments(),
            "full_text_documents": self._full_text_index.count(),
            "embedding_backend": self.config.embedding.backend,
        }
        if self._embedding_store_available():
            state = self.embedding_store.table_state(self.table_name)
            info["embedding_table"] = state.value
            if state is not TableState.ABSENT:
                info["embeddings"] = self.embedding_store.count(self.table_name)
        return info

    def close(self) -> None:
        if self._embedding_store is not None:
            self._embedding_store.close()
        self._full_text_index.close()
        self._metadata_store.close()
        if self._log_handler is not None:
            detach_ops_log(self._log_handler)
            self._log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
