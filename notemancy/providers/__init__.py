from .base import EmbeddingProvider
from .embeddings import SentenceTransformerEmbedding, create_embedding_provider

__all__ = ["EmbeddingProvider", "SentenceTransformerEmbedding", "create_embedding_provider"]
