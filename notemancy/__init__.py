"""
notemancy: full-text and semantic search over markdown vaults.

Quick start:
    from notemancy import KnowledgeBase

    kb = KnowledgeBase.open(Path("~/.notemancy").expanduser())
    kb.scan()
    kb.rebuild_full_text()
    kb.index_embeddings()
    kb.search("wiki")
    kb.similarity_search("notes about gardening")
"""

__version__ = "0.3.0"

from .api import KnowledgeBase
from .config import KbConfig, VaultConfig, load_config, load_or_create_config, resolve_vaults
from .errors import (
    ConversionError,
    DimensionMismatchError,
    IndicatorNotFoundError,
    KbError,
    NotFoundError,
    ProviderUnavailableError,
    StorageIOError,
    TaskFailureError,
)
from .types import DocumentEmbedding, PageContent, PageRecord, ScannedFile, SearchResult, SimilarDocument

__all__ = [
    "KnowledgeBase",
    "KbConfig",
    "VaultConfig",
    "load_config",
    "load_or_create_config",
    "resolve_vaults",
    "KbError",
    "StorageIOError",
    "NotFoundError",
    "DimensionMismatchError",
    "ConversionError",
    "IndicatorNotFoundError",
    "TaskFailureError",
    "ProviderUnavailableError",
    "DocumentEmbedding",
    "PageContent",
    "PageRecord",
    "ScannedFile",
    "SearchResult",
    "SimilarDocument",
]
