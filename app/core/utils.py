import json
import math
import shutil
import structlog
import numpy as np
from typing import List, Sequence

from app.core.errors import DataIntegrityError, EmbeddingSpaceMismatchError
from app.models.media import EmbeddingSpace

logger = structlog.get_logger()

def serialize_embedding(vector: Sequence[float]) -> str:
    """Serialize an embedding vector to a JSON string for storage."""
    return json.dumps([float(v) for v in vector])

def deserialize_embedding(text: str) -> List[float]:
    """
    Deserialize a JSON string back to an embedding vector.

    Raises DataIntegrityError if the payload is not a JSON array of finite
    numbers. Values are never coerced.
    """
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as e:
        raise DataIntegrityError(f"Failed to deserialize embedding: {e}")

    if not isinstance(parsed, list):
        raise DataIntegrityError("Deserialized embedding is not an array")

    for index, value in enumerate(parsed):
        # bool is an int subclass and must not pass as a component
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise DataIntegrityError(f"Invalid embedding element at index {index}: expected finite number")
        try:
            finite = math.isfinite(value)
        except OverflowError:
            finite = False
        if not finite:
            raise DataIntegrityError(f"Invalid embedding element at index {index}: expected finite number")

    return [float(v) for v in parsed]

def validate_embedding(vector: Sequence[float], space: EmbeddingSpace) -> List[float]:
    """Check that a vector is finite and as wide as its embedding space."""
    if len(vector) != space.dimensions:
        raise EmbeddingSpaceMismatchError(
            f"Embedding has {len(vector)} components, expected {space.dimensions} for {space.name}"
        )
    if any(isinstance(v, (bool, str, bytes)) for v in vector):
        raise DataIntegrityError(f"Embedding for {space.name} contains non-numeric components")
    try:
        array = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError, OverflowError) as e:
        raise DataIntegrityError(f"Embedding for {space.name} contains non-numeric components: {e}")
    if not np.all(np.isfinite(array)):
        raise DataIntegrityError(f"Embedding for {space.name} contains non-finite components")
    return array.tolist()

def cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity (1 - cosine distance) of one query against each row."""
    query_norm = np.linalg.norm(query)
    row_norms = np.linalg.norm(matrix, axis=1)
    denominator = row_norms * query_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        similarities = np.where(denominator > 0, matrix @ query / denominator, 0.0)
    return similarities

def cleanup_temp_dir(dir_path: str) -> None:
    """Remove a temporary directory tree; failures are logged, never raised."""
    try:
        shutil.rmtree(dir_path, ignore_errors=True)
        logger.debug("Cleaned up temporary directory", dir_path=dir_path)
    except Exception as e:
        logger.warning("Failed to cleanup temporary directory", dir_path=dir_path, error=str(e))

def format_file_size(size_bytes: int) -> str:
    """Format file size in human-readable format."""
    if size_bytes == 0:
        return "0 B"

    size_names = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while size_bytes >= 1024 and i < len(size_names) - 1:
        size_bytes /= 1024.0
        i += 1

    return f"{size_bytes:.1f} {size_names[i]}"
