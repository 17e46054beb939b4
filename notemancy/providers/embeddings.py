"""
Embedding providers.

The sentence-transformers model is loaded lazily on first use, so commands
that never embed (scan, lexical search) don't pay for importing torch.
"""

import logging
import threading
from typing import Optional

from ..config import EmbeddingConfig
from ..errors import ProviderUnavailableError
from .base import EmbeddingProvider


logger = logging.getLogger(__name__)


class SentenceTransformerEmbedding:
    """
    Embedding provider using a local sentence-transformers model.

    Requires the ``local`` extra: pip install notemancy[local]
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", dimension: Optional[int] = None):
        self.model_name = model
        self._dimension = dimension
        self._model = None
        self._lock = threading.Lock()

    def _load(self):
        with self._lock:
            if self._model is None:
                try:
                    from sentence_transformers import SentenceTransformer
                except ImportError as e:
                    raise ProviderUnavailableError(
                        "SentenceTransformerEmbedding requires 'sentence-transformers' library. "
                        "Install with: pip install notemancy[local]"
                    ) from e
                logger.info("Loading embedding model %s", self.model_name)
                try:
                    self._model = SentenceTransformer(self.model_name)
                except OSError as e:
                    raise ProviderUnavailableError(
                        f"Cannot load embedding model {self.model_name!r}: {e}"
                    ) from e
        return self._model

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = self._load().get_sentence_embedding_dimension()
        return self._dimension

    def embed(self, text: str) -> list[float]:
        return self._load().encode(text, convert_to_numpy=True).tolist()

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        return self._load().encode(texts, convert_to_numpy=True).tolist()


_PROVIDERS = {
    "sentence-transformers": SentenceTransformerEmbedding,
}


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """
    Create the configured embedding provider.

    Raises:
        ValueError: If the provider name is unknown
    """
    try:
        factory = _PROVIDERS[config.provider]
    except KeyError:
        raise ValueError(
            f"Unknown embedding provider: {config.provider!r}. Available: {sorted(_PROVIDERS)}"
        ) from None
    return factory(config.model)
