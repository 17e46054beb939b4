"""
Indexers that keep the lexical and vector indexes in step with the
metadata store.

``index_documents`` embeds every markdown page the scanner recorded.
File reads and embedding run on worker threads; the calling thread is the
only writer to the embedding store. A background reporter logs progress
counters while the run is in flight. One document failing never stops
the run: its (path, error) pair lands in the IndexReport.

``build_full_text_index`` wipes the lexical index and re-adds every page.
"""

import json
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from .errors import DimensionMismatchError, KbError, NotFoundError, StorageIOError, TaskFailureError
from .fulltext import FullTextIndex
from .metadata_store import MetadataStore
from .protocol import EmbeddingStoreProtocol
from .providers.base import EmbeddingProvider
from .types import DocumentEmbedding, FileRecord, embedding_id, is_markdown


logger = logging.getLogger(__name__)

PROGRESS_INTERVAL = 0.5
STATUS_INTERVAL = 2.0


@dataclass
class IndexReport:
    """Outcome of an indexing run."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)
    removed: int = 0
    elapsed: float = 0.0

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def summary(self) -> str:
        lines = [
            f"Indexed {self.succeeded} of {self.total} documents "
            f"({self.failed} failed) in {self.elapsed:.1f}s."
        ]
        if self.removed:
            lines.append(f"Removed {self.removed} stale embeddings.")
        for path, message in self.errors:
            lines.append(f"File {path}: {message}")
        return "\n".join(lines) + "\n"

    def __str__(self) -> str:
        return self.summary()


# -----------------------------------------------------------------------------
# Progress reporting
# -----------------------------------------------------------------------------

class IndexProgress:
    """Thread-safe processed/succeeded/failed counters."""

    def __init__(self, total: int):
        self.total = total
        self._succeeded = 0
        self._failed = 0
        self._lock = threading.Lock()

    def success(self, n: int = 1) -> None:
        with self._lock:
            self._succeeded += n

    def failure(self, n: int = 1) -> None:
        with self._lock:
            self._failed += n

    def snapshot(self) -> tuple[int, int, int]:
        """(processed, succeeded, failed)"""
        with self._lock:
            return self._succeeded + self._failed, self._succeeded, self._failed


class ProgressReporter(threading.Thread):
    """
    Polls IndexProgress on a fixed interval and reports it.

    Ticks go to ``callback`` (if any) and the debug log; a full status
    line is logged at INFO every ``status_interval`` seconds.
    """

    def __init__(
        self,
        progress: IndexProgress,
        callback: Optional[Callable[[int, int, int, int], None]] = None,
        interval: float = PROGRESS_INTERVAL,
        status_interval: float = STATUS_INTERVAL,
    ):
        super().__init__(name="notemancy-progress", daemon=True)
        self.progress = progress
        self.callback = callback
        self.interval = interval
        self.status_interval = status_interval
        self._stop_event = threading.Event()

    def run(self) -> None:
        started = time.monotonic()
        last_status = started
        while not self._stop_event.wait(self.interval):
            processed, succeeded, failed = self.progress.snapshot()
            if self.callback is not None:
                self.callback(processed, succeeded, failed, self.progress.total)
            logger.debug("Indexing progress: %d/%d", processed, self.progress.total)
            now = time.monotonic()
            if now - last_status >= self.status_interval:
                last_status = now
                logger.info(
                    "Indexing: %d/%d processed, %d succeeded, %d failed (%.0fs)",
                    processed, self.progress.total, succeeded, failed, now - started,
                )

    def stop(self) -> None:
        self._stop_event.set()
        self.join()


# -----------------------------------------------------------------------------
# Embedding index
# -----------------------------------------------------------------------------

def markdown_documents(metadata_store: MetadataStore) -> list[FileRecord]:
    """Markdown entries of the file tree, first occurrence of each physical path."""
    seen: set[str] = set()
    documents = []
    for record in metadata_store.get_file_tree():
        if not is_markdown(record.path) or record.path in seen:
            continue
        seen.add(record.path)
        documents.append(record)
    return documents


def read_document(path: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NotFoundError(f"File not found: {path}") from e
    except (OSError, UnicodeDecodeError) as e:
        raise StorageIOError(f"Cannot read {path}: {e}") from e


def build_embedding(record: FileRecord, provider: EmbeddingProvider, dimension: int) -> DocumentEmbedding:
    """
    Read and embed one document.

    Raises:
        NotFoundError, StorageIOError: If the file can't be read
        DimensionMismatchError: If the provider returns the wrong length
    """
    content = read_document(record.path)
    vector = provider.embed(content)
    if len(vector) != dimension:
        raise DimensionMismatchError(dimension, len(vector), record.path)
    return DocumentEmbedding(
        id=embedding_id(record.virtual_path, record.path),
        vector=[float(x) for x in vector],
        metadata={
            "physical_path": record.path,
            "virtual_path": record.virtual_path,
            "record_metadata": record.metadata or json.dumps({}),
        },
    )


def _as_kb_error(exc: BaseException) -> KbError:
    if isinstance(exc, KbError):
        return exc
    failure = TaskFailureError(f"Indexing worker failed: {exc!r}")
    failure.__cause__ = exc
    return failure


def _write_batch(
    embedding_store: EmbeddingStoreProtocol,
    table: str,
    batch: list[tuple[FileRecord, DocumentEmbedding]],
    progress: IndexProgress,
    report: IndexReport,
) -> None:
    """Replace the batch's embeddings; the whole batch fails together."""
    if not batch:
        return
    embeddings = [embedding for _, embedding in batch]
    try:
        try:
            embedding_store.delete_embeddings(table, [e.id for e in embeddings])
        except NotFoundError:
            pass  # nothing to replace
        embedding_store.add_embeddings(table, embeddings)
    except KbError as e:
        for record, _ in batch:
            report.errors.append((record.path, str(e)))
        progress.failure(len(batch))
        logger.warning("Failed to store %d embeddings: %s", len(batch), e)
        return
    progress.success(len(batch))


def prune_embeddings(
    embedding_store: EmbeddingStoreProtocol,
    table: str,
    documents: list[FileRecord],
) -> int:
    """
    Delete embeddings whose (virtual path, physical path) pair is no longer
    recorded, e.g. after a frontmatter ``folder`` change moved a page.

    Returns the number of embeddings removed.
    """
    expected = {embedding_id(record.virtual_path, record.path) for record in documents}
    stale = [id for id in embedding_store.list_ids(table) if id not in expected]
    if stale:
        embedding_store.delete_embeddings(table, stale)
        logger.info("Removed %d stale embeddings from %s", len(stale), table)
    return len(stale)


def index_documents(
    metadata_store: MetadataStore,
    embedding_store: EmbeddingStoreProtocol,
    provider: EmbeddingProvider,
    table: str,
    *,
    batch_size: int = 64,
    workers: int = 1,
    on_progress: Optional[Callable[[int, int, int, int], None]] = None,
    progress_interval: float = PROGRESS_INTERVAL,
) -> IndexReport:
    """
    Embed every markdown document recorded in the metadata store.

    Re-indexing is idempotent: each document's embedding id is derived from
    its (virtual path, physical path) pair, and the previous embedding is
    replaced. Embeddings of pairs no longer in the metadata store are
    deleted once every batch is written.

    Args:
        metadata_store: Source of the file tree
        embedding_store: Destination store
        provider: Embedding model
        table: Embedding table name (created if absent)
        batch_size: Embeddings written per store call
        workers: Threads reading and embedding documents
        on_progress: Called with (processed, succeeded, failed, total) on each tick

    Raises:
        StorageIOError: If the embedding table can't be created
    """
    started = time.monotonic()
    embedding_store.create_table(table)

    documents = markdown_documents(metadata_store)
    report = IndexReport(total=len(documents))
    progress = IndexProgress(len(documents))
    reporter = ProgressReporter(progress, on_progress, interval=progress_interval)
    reporter.start()
    logger.info("Indexing %d documents into %s", len(documents), table)

    batch: list[tuple[FileRecord, DocumentEmbedding]] = []
    try:
        with ThreadPoolExecutor(max_workers=max(workers, 1), thread_name_prefix="notemancy-embed") as pool:
            futures: list[tuple[FileRecord, Future]] = [
                (record, pool.submit(build_embedding, record, provider, embedding_store.dimension))
                for record in documents
            ]
            for record, future in futures:
                try:
                    embedding = future.result()
                except Exception as e:
                    error = _as_kb_error(e)
                    report.errors.append((record.path, str(error)))
                    progress.failure()
                    logger.warning("Failed to embed %s: %s", record.path, error)
                    continue
                batch.append((record, embedding))
                if len(batch) >= batch_size:
                    _write_batch(embedding_store, table, batch, progress, report)
                    batch = []
            _write_batch(embedding_store, table, batch, progress, report)
    finally:
        reporter.stop()

    report.removed = prune_embeddings(embedding_store, table, documents)
    _, report.succeeded, report.failed = progress.snapshot()
    report.elapsed = time.monotonic() - started
    logger.info(
        "Indexing finished: %d succeeded, %d failed of %d (%.1fs)",
        report.succeeded, report.failed, report.total, report.elapsed,
    )
    return report


def remove_embeddings(
    embedding_store: EmbeddingStoreProtocol,
    table: str,
    pairs: list[tuple[str, str]],
) -> None:
    """Delete the embeddings of (virtual path, physical path) pairs."""
    if not pairs or not embedding_store.table_exists(table):
        return
    embedding_store.delete_embeddings(table, [embedding_id(v, p) for v, p in pairs])


# -----------------------------------------------------------------------------
# Full-text index
# -----------------------------------------------------------------------------

def build_full_text_index(full_text_index: FullTextIndex, metadata_store: MetadataStore) -> IndexReport:
    """
    Rebuild the lexical index from every markdown page.

    The index is cleared first, then each page is read and re-added.
    """
    started = time.monotonic()
    documents = markdown_documents(metadata_store)
    report = IndexReport(total=len(documents))

    full_text_index.clear()
    for record in documents:
        try:
            full_text_index.add_document(record.path, read_document(record.path))
        except KbError as e:
            report.failed += 1
            report.errors.append((record.path, str(e)))
            logger.warning("Failed to index %s: %s", record.path, e)
            continue
        report.succeeded += 1

    report.elapsed = time.monotonic() - started
    logger.info(
        "Full-text index rebuilt: %d documents, %d failed (%.1fs)",
        report.succeeded, report.failed, report.elapsed,
    )
    return report


def update_document(full_text_index: FullTextIndex, path: str) -> None:
    """Re-index a single file in the lexical index."""
    full_text_index.update_document(path)


def remove_document(full_text_index: FullTextIndex, path: str) -> bool:
    """Drop a single file from the lexical index."""
    return full_text_index.remove_document(path)
