"""
Data types for notemancy.

Records flowing between the scanner, the metadata store, the indexers,
and the retrieval facade.
"""

import hashlib
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


MARKDOWN_SUFFIXES = (".md", ".markdown")


def is_markdown(path: str) -> bool:
    """True if the path names a markdown document."""
    return path.lower().endswith(MARKDOWN_SUFFIXES)


def embedding_id(virtual_path: str, physical_path: str) -> str:
    """
    Derive the embedding identifier for a document.

    Hashes the (virtual path, physical path) pair as a JSON array, so the
    id is stable across runs and no separator character can make two
    different pairs collide.
    """
    key = json.dumps([virtual_path, physical_path], ensure_ascii=False)
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


@dataclass
class ScannedFile:
    """
    A file discovered by a scan, before it is written to the metadata store.

    Attributes:
        vault: Name of the vault the file was found in
        path: Physical path on disk
        virtual_path: Logical path after the indicator segment
        metadata: Parsed frontmatter mapping, if the file had one
        last_modified: ISO timestamp from filesystem metadata
        created: ISO timestamp (falls back to last_modified)
    """
    vault: str
    path: str
    virtual_path: str
    metadata: Optional[dict[str, Any]]
    last_modified: str
    created: str

    @property
    def metadata_json(self) -> str:
        """Serialized frontmatter, empty string when there is none."""
        if self.metadata is None:
            return ""
        return json.dumps(self.metadata, ensure_ascii=False, default=str)


@dataclass
class PageRecord:
    """A row of the ``pagetable`` table."""
    id: int
    vault: str
    path: str
    virtual_path: str
    metadata: str
    last_modified: str
    created: str

    @property
    def metadata_dict(self) -> dict[str, Any]:
        if not self.metadata:
            return {}
        try:
            value = json.loads(self.metadata)
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}

    @property
    def title(self) -> str:
        return Path(self.path).stem


@dataclass
class PageContent:
    """A page's text with its frontmatter mapping."""
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class AttachmentRecord:
    """A row of the ``attachments`` table."""
    id: int
    path: str
    virtual_path: str
    type: str


@dataclass
class FileRecord:
    """One entry of the metadata store's file tree."""
    path: str
    virtual_path: str
    metadata: str


@dataclass
class DocumentEmbedding:
    """
    A vector stored in an embedding store.

    ``metadata`` carries at least ``physical_path`` and ``virtual_path``
    so search hits can be resolved back to a PageRecord.
    """
    id: str
    vector: list[float]
    metadata: dict[str, str] = field(default_factory=dict)

    @property
    def physical_path(self) -> str:
        return self.metadata.get("physical_path", "")

    @property
    def virtual_path(self) -> str:
        return self.metadata.get("virtual_path", "")


@dataclass
class SearchResult:
    """A lexical search hit."""
    path: str
    title: str
    score: float
    snippet: str


@dataclass
class SimilarDocument:
    """A semantic search hit, with its similarity normalized so higher is closer."""
    path: str
    virtual_path: str
    similarity: float
    embedding: DocumentEmbedding
    page: Optional[PageRecord] = None
