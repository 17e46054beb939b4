"""
Embedding store backends and the helpers they share.
"""

import json
from typing import Any

from ..errors import ConversionError, DimensionMismatchError
from ..types import DocumentEmbedding


def validate_embeddings(embeddings: list[DocumentEmbedding], dimension: int) -> None:
    """Raise DimensionMismatchError if any vector has the wrong length."""
    for embedding in embeddings:
        if len(embedding.vector) != dimension:
            raise DimensionMismatchError(dimension, len(embedding.vector), embedding.id)


def validate_query(vector: list[float], dimension: int) -> list[float]:
    if len(vector) != dimension:
        raise DimensionMismatchError(dimension, len(vector))
    return [float(x) for x in vector]


def encode_metadata(metadata: dict[str, str]) -> str:
    return json.dumps(metadata, ensure_ascii=False, sort_keys=True)


def decode_metadata(text: Any) -> dict[str, str]:
    """Parse a stored ``metadata_json`` value back into a string map."""
    if not text:
        return {}
    try:
        data = json.loads(text)
    except (TypeError, json.JSONDecodeError) as e:
        raise ConversionError(f"Invalid metadata_json: {e}") from e
    if not isinstance(data, dict):
        raise ConversionError("metadata_json is not an object")
    return {str(k): str(v) for k, v in data.items()}
