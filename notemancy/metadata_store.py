"""
Metadata store using SQLite.

Holds one row per scanned document (``pagetable``) and one per attachment
(``attachments``). The physical path is the unique key of both tables, so
re-scanning a file updates its row instead of adding a new one.

The connection is shared between threads; writes are serialized by a lock.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from .errors import StorageIOError
from .types import AttachmentRecord, FileRecord, PageRecord, ScannedFile


logger = logging.getLogger(__name__)

# Columns that may be named in query_by_fields
QUERYABLE_COLUMNS = frozenset({
    "id", "vault", "path", "virtualPath", "metadata", "last_modified", "created",
})


class MetadataStore:
    """
    SQLite-backed store for document and attachment records.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file

        Raises:
            StorageIOError: If the database cannot be opened
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        except (OSError, sqlite3.Error) as e:
            raise StorageIOError(f"Cannot open metadata store {self._db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS pagetable (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                vault TEXT NOT NULL,
                path TEXT UNIQUE,
                virtualPath TEXT,
                metadata TEXT,
                last_modified TEXT,
                created TEXT
            )
        """)

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS attachments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                path TEXT UNIQUE,
                virtualPath TEXT,
                type TEXT
            )
        """)

        self._conn.commit()

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageIOError(f"Metadata store error: {e}") from e

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def upsert_page(self, file: ScannedFile) -> None:
        """
        Insert or update the pagetable row for a scanned file.

        Last write wins: virtual path, metadata, and timestamps are
        replaced; the surrogate id is kept.
        """
        with self._lock:
            self._execute("""
                INSERT INTO pagetable (vault, path, virtualPath, metadata, last_modified, created)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    vault = excluded.vault,
                    virtualPath = excluded.virtualPath,
                    metadata = excluded.metadata,
                    last_modified = excluded.last_modified,
                    created = excluded.created
            """, (
                file.vault,
                file.path,
                file.virtual_path,
                file.metadata_json,
                file.last_modified,
                file.created,
            ))
            self._conn.commit()

    def upsert_attachment(self, path: str, virtual_path: str, type: str) -> None:
        """Insert or update an attachment row keyed by physical path."""
        with self._lock:
            self._execute("""
                INSERT INTO attachments (path, virtualPath, type)
                VALUES (?, ?, ?)
                ON CONFLICT(path) DO UPDATE SET
                    virtualPath = excluded.virtualPath,
                    type = excluded.type
            """, (path, virtual_path, type))
            self._conn.commit()

    def delete_page(self, path: str) -> bool:
        """
        Delete a page record.

        Returns:
            True if a row was deleted
        """
        with self._lock:
            cursor = self._execute("DELETE FROM pagetable WHERE path = ?", (path,))
            self._conn.commit()
        return cursor.rowcount > 0

    def cleanup_stale_records(self) -> list[str]:
        """
        Remove page and attachment rows whose file no longer exists.

        Returns:
            Physical paths of the removed rows
        """
        removed: list[str] = []
        with self._lock:
            for table in ("pagetable", "attachments"):
                rows = self._execute(f"SELECT path FROM {table}").fetchall()
                stale = [row["path"] for row in rows if not Path(row["path"]).exists()]
                for path in stale:
                    self._execute(f"DELETE FROM {table} WHERE path = ?", (path,))
                    logger.info("Removed stale %s record: %s", table, path)
                removed.extend(stale)
            self._conn.commit()
        return removed

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def _page_from_row(self, row: sqlite3.Row) -> PageRecord:
        return PageRecord(
            id=row["id"],
            vault=row["vault"],
            path=row["path"],
            virtual_path=row["virtualPath"] or "",
            metadata=row["metadata"] or "",
            last_modified=row["last_modified"] or "",
            created=row["created"] or "",
        )

    def get_page_by_path(self, path: str) -> Optional[PageRecord]:
        row = self._execute("SELECT * FROM pagetable WHERE path = ?", (path,)).fetchone()
        return self._page_from_row(row) if row else None

    def get_page_by_virtual_path(self, virtual_path: str) -> Optional[PageRecord]:
        """
        Look up a page by virtual path.

        Virtual paths are not unique across vaults; the lowest id wins.
        """
        row = self._execute(
            "SELECT * FROM pagetable WHERE virtualPath = ? ORDER BY id LIMIT 1",
            (virtual_path,),
        ).fetchone()
        return self._page_from_row(row) if row else None

    def get_attachment(self, path: str) -> Optional[AttachmentRecord]:
        row = self._execute("SELECT * FROM attachments WHERE path = ?", (path,)).fetchone()
        return self._attachment_from_row(row)

    def get_attachment_by_virtual_path(self, virtual_path: str) -> Optional[AttachmentRecord]:
        row = self._execute(
            "SELECT * FROM attachments WHERE virtualPath = ? ORDER BY id LIMIT 1",
            (virtual_path,),
        ).fetchone()
        return self._attachment_from_row(row)

    def _attachment_from_row(self, row: Optional[sqlite3.Row]) -> Optional[AttachmentRecord]:
        if row is None:
            return None
        return AttachmentRecord(
            id=row["id"],
            path=row["path"],
            virtual_path=row["virtualPath"] or "",
            type=row["type"] or "",
        )

    def get_file_tree(self) -> list[FileRecord]:
        """All pages ordered by virtual path."""
        rows = self._execute(
            "SELECT path, virtualPath, metadata FROM pagetable ORDER BY virtualPath"
        ).fetchall()
        return [
            FileRecord(
                path=row["path"],
                virtual_path=row["virtualPath"] or "",
                metadata=row["metadata"] or "",
            )
            for row in rows
        ]

    def list_pages(self, vault: Optional[str] = None) -> list[PageRecord]:
        if vault is None:
            rows = self._execute("SELECT * FROM pagetable ORDER BY virtualPath").fetchall()
        else:
            rows = self._execute(
                "SELECT * FROM pagetable WHERE vault = ? ORDER BY virtualPath", (vault,)
            ).fetchall()
        return [self._page_from_row(row) for row in rows]

    def list_files(self, vault: str) -> list[tuple[str, str]]:
        """(path, virtual path) pairs of one vault, ordered by virtual path."""
        return [(p.path, p.virtual_path) for p in self.list_pages(vault)]

    def list_attachments(self, type: Optional[str] = None) -> list[AttachmentRecord]:
        if type is None:
            rows = self._execute("SELECT * FROM attachments ORDER BY virtualPath").fetchall()
        else:
            rows = self._execute(
                "SELECT * FROM attachments WHERE type = ? ORDER BY virtualPath", (type,)
            ).fetchall()
        return [
            AttachmentRecord(
                id=row["id"],
                path=row["path"],
                virtual_path=row["virtualPath"] or "",
                type=row["type"] or "",
            )
            for row in rows
        ]

    def query_by_fields(
        self,
        fields: list[str],
        conditions: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """
        Select columns from pagetable with equality conditions.

        Args:
            fields: Column names to return
            conditions: Column -> value equality filters, ANDed

        Raises:
            ValueError: If a field or condition names an unknown column
        """
        conditions = conditions or {}
        if not fields:
            raise ValueError("At least one field is required")
        for name in list(fields) + list(conditions):
            if name not in QUERYABLE_COLUMNS:
                raise ValueError(f"Unknown column: {name!r}")

        sql = f"SELECT {', '.join(fields)} FROM pagetable"
        params: list[Any] = []
        if conditions:
            clauses = []
            for name, value in conditions.items():
                clauses.append(f"{name} = ?")
                params.append(value)
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id"

        rows = self._execute(sql, tuple(params)).fetchall()
        return [{name: row[name] for name in fields} for row in rows]

    def count(self, vault: Optional[str] = None) -> int:
        if vault is None:
            row = self._execute("SELECT COUNT(*) FROM pagetable").fetchone()
        else:
            row = self._execute("SELECT COUNT(*) FROM pagetable WHERE vault = ?", (vault,)).fetchone()
        return row[0]

    def count_attachments(self) -> int:
        return self._execute("SELECT COUNT(*) FROM attachments").fetchone()[0]

    def vault_counts(self) -> dict[str, int]:
        rows = self._execute(
            "SELECT vault, COUNT(*) AS n FROM pagetable GROUP BY vault ORDER BY vault"
        ).fetchall()
        return {row["vault"]: row["n"] for row in rows}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
