"""
Full-text index using SQLite FTS5.

One row per markdown document with columns ``title`` (weighted 2x),
``body``, and ``path`` (unindexed, used to resolve hits). Scores are
negated BM25 ranks, so higher is better.
"""

import logging
import re
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import NotFoundError, StorageIOError
from .frontmatter import strip_frontmatter
from .types import SearchResult


logger = logging.getLogger(__name__)

TITLE_BOOST = 2.0
BODY_BOOST = 1.0
SNIPPET_LENGTH = 200
SNIPPET_WINDOW = 10
SNIPPET_CONTEXT = 2

_TERM_RE = re.compile(r"\w+", re.UNICODE)
_H1_RE = re.compile(r"^#\s+(.+?)\s*#*\s*$")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n[ \t]*\n")
_HEADING_LINE_RE = re.compile(r"^\s*#{1,6}(\s|$)")


# -----------------------------------------------------------------------------
# Text extraction
# -----------------------------------------------------------------------------

def query_terms(query: str) -> list[str]:
    """Split a query into lowercase word terms, keeping first-seen order."""
    seen: dict[str, None] = {}
    for term in _TERM_RE.findall(query.lower()):
        seen.setdefault(term, None)
    return list(seen)


def extract_title(content: str, path: str) -> str:
    """First ``# `` heading of the body, else the filename without extension."""
    for line in strip_frontmatter(content).splitlines():
        match = _H1_RE.match(line.strip())
        if match:
            return match.group(1)
    return Path(path).stem


def _count_terms(text: str, terms: list[str]) -> int:
    lowered = text.lower()
    return sum(1 for term in terms if term.lower() in lowered)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[:max(max_length - 3, 0)] + "..."


def split_paragraphs(body: str) -> list[str]:
    """
    Blank-line separated paragraphs with ATX heading lines removed.

    Tag lines such as ``#wiki`` are body text and stay.
    """
    paragraphs = []
    for block in _PARAGRAPH_SPLIT_RE.split(body):
        lines = [line for line in block.splitlines() if not _HEADING_LINE_RE.match(line)]
        text = "\n".join(lines).strip()
        if text:
            paragraphs.append(text)
    return paragraphs


def extract_relevant_snippet(
    body: str,
    terms: list[str],
    max_length: int = SNIPPET_LENGTH,
) -> str:
    """
    Pick the passage of ``body`` that best matches ``terms``.

    Paragraphs are scored by how many distinct terms they contain. A short
    winner is returned whole; a long one is narrowed to its best 10-word
    window plus 2 words either side, with ``...`` marking cut edges. With
    no matching paragraph the first paragraph is returned. The result is
    capped at ``max_length`` characters.
    """
    paragraphs = split_paragraphs(body)
    if not paragraphs:
        return ""

    scored = [(_count_terms(p, terms), p) for p in paragraphs]
    best_score = max(score for score, _ in scored)
    if best_score == 0:
        return _truncate(paragraphs[0], max_length)
    best = next(p for score, p in scored if score == best_score)

    words = best.split()
    if len(words) <= SNIPPET_WINDOW:
        return _truncate(best, max_length)

    best_start, best_window_score = 0, -1
    for start in range(len(words) - SNIPPET_WINDOW + 1):
        score = _count_terms(" ".join(words[start:start + SNIPPET_WINDOW]), terms)
        if score > best_window_score:
            best_start, best_window_score = start, score

    start = max(best_start - SNIPPET_CONTEXT, 0)
    end = min(best_start + SNIPPET_WINDOW + SNIPPET_CONTEXT, len(words))
    snippet = " ".join(words[start:end])
    if start > 0:
        snippet = "... " + snippet
    if end < len(words):
        snippet = snippet + " ..."
    return _truncate(snippet, max_length)


def _match_expression(terms: list[str]) -> str:
    """FTS5 MATCH expression: each term quoted, ORed together."""
    return " OR ".join('"' + term.replace('"', '""') + '"' for term in terms)


# -----------------------------------------------------------------------------
# Index
# -----------------------------------------------------------------------------

class FullTextIndex:
    """
    Lexical index over markdown documents.
    """

    def __init__(self, db_path: Path, snippet_length: int = SNIPPET_LENGTH):
        self._db_path = Path(db_path)
        self.snippet_length = snippet_length
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("""
                CREATE VIRTUAL TABLE IF NOT EXISTS pages_fts USING fts5(
                    title,
                    body,
                    path UNINDEXED,
                    tokenize = 'unicode61'
                )
            """)
            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise StorageIOError(f"Cannot open full-text index {self._db_path}: {e}") from e

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_document(self, path: str, content: str) -> None:
        """Index (or re-index) one document from its raw content."""
        title = extract_title(content, path)
        body = strip_frontmatter(content)
        with self._lock:
            self._conn.execute("DELETE FROM pages_fts WHERE path = ?", (path,))
            self._conn.execute(
                "INSERT INTO pages_fts (title, body, path) VALUES (?, ?, ?)",
                (title, body, path),
            )
            self._conn.commit()

    def update_document(self, path: str) -> None:
        """
        Re-read a file from disk and replace its index entry.

        Raises:
            NotFoundError: If the file doesn't exist
            StorageIOError: If the file can't be read
        """
        file_path = Path(path)
        if not file_path.is_file():
            raise NotFoundError(f"File not found: {path}")
        try:
            content = file_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageIOError(f"Cannot read {path}: {e}") from e
        self.add_document(path, content)

    def remove_document(self, path: str) -> bool:
        """Remove a document. Returns True if it was indexed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM pages_fts WHERE path = ?", (path,))
            self._conn.commit()
        return cursor.rowcount > 0

    def clear(self) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM pages_fts")
            self._conn.commit()

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def search(self, query: str, limit: int = 10) -> list[SearchResult]:
        """
        Ranked lexical search.

        Any document containing at least one query term matches. An empty
        query (no word characters) returns no results.
        """
        terms = query_terms(query)
        if not terms or limit <= 0:
            return []
        rows = self._conn.execute(f"""
            SELECT path, title, body, bm25(pages_fts, {TITLE_BOOST}, {BODY_BOOST}, 0.0) AS rank
            FROM pages_fts
            WHERE pages_fts MATCH ?
            ORDER BY rank
            LIMIT ?
        """, (_match_expression(terms), limit)).fetchall()

        return [
            SearchResult(
                path=row["path"],
                title=row["title"],
                score=-row["rank"],
                snippet=extract_relevant_snippet(row["body"], terms, self.snippet_length),
            )
            for row in rows
        ]

    def contains(self, path: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM pages_fts WHERE path = ? LIMIT 1", (path,)
        ).fetchone()
        return row is not None

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM pages_fts").fetchone()[0]

    def stats(self) -> dict:
        """Document count and on-disk size of the index."""
        size = self._db_path.stat().st_size if self._db_path.exists() else 0
        return {"num_documents": self.count(), "index_size_bytes": size}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
