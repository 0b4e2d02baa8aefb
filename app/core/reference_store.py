"""
Protected reference store interface and an in-memory implementation.

The store is always passed explicitly to the matcher so the matching core can
run against the in-memory store in tests and local development, and against
pgvector (app.core.database) in production.
"""

import json
import threading
import structlog
import numpy as np
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.core.errors import DataIntegrityError, EmbeddingSpaceMismatchError
from app.core.utils import cosine_similarity, deserialize_embedding, validate_embedding
from app.models.media import EmbeddingSpace, MediaType, ReferenceItem

logger = structlog.get_logger()

# (reference_id, label, similarity)
VectorHit = Tuple[int, str, float]
# (reference_id, label)
NameHit = Tuple[int, str]


class ReferenceStore(ABC):
    """Abstract interface for the protected reference corpus.

    A store holds vectors from exactly one embedding space.
    """

    def __init__(self, space: EmbeddingSpace):
        self._space = space

    @property
    def space(self) -> EmbeddingSpace:
        return self._space

    def ensure_compatible(self, vector: Sequence[float], space: EmbeddingSpace) -> List[float]:
        """Reject queries or inserts from a different embedding space, or with no direction."""
        if space != self._space:
            raise EmbeddingSpaceMismatchError(
                f"Vector from {space.name} cannot be compared with store space {self._space.name}"
            )
        embedding = validate_embedding(vector, self._space)
        # Cosine similarity against a zero-norm vector is undefined
        if not np.any(np.asarray(embedding)):
            raise DataIntegrityError(f"Zero-norm vector rejected for {self._space.name}")
        return embedding

    @abstractmethod
    def insert(self, label: str, vector: Sequence[float], space: EmbeddingSpace,
               content_type: MediaType = MediaType.IMAGE) -> ReferenceItem:
        """Add a reference item and return it with its assigned id."""
        pass

    @abstractmethod
    def query_by_vector(self, vector: Sequence[float], space: EmbeddingSpace,
                        threshold: float, limit: int) -> List[VectorHit]:
        """Entries with cosine similarity strictly above threshold, best first."""
        pass

    @abstractmethod
    def query_by_name(self, token: str, limit: int) -> List[NameHit]:
        """Distinct entries whose label contains token, case-insensitively."""
        pass

    @abstractmethod
    def get(self, reference_id: int) -> Optional[ReferenceItem]:
        pass

    @abstractmethod
    def count(self) -> int:
        pass

    def check_connection(self) -> bool:
        return True


class InMemoryReferenceStore(ReferenceStore):
    """In-memory reference store using numpy cosine similarity."""

    def __init__(self, space: EmbeddingSpace):
        super().__init__(space)
        self._items: Dict[int, ReferenceItem] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def insert(self, label: str, vector: Sequence[float], space: EmbeddingSpace,
               content_type: MediaType = MediaType.IMAGE) -> ReferenceItem:
        embedding = self.ensure_compatible(vector, space)
        with self._lock:
            item = ReferenceItem(
                id=self._next_id,
                label=label,
                embedding=embedding,
                space=self._space,
                content_type=content_type,
            )
            self._items[item.id] = item
            self._next_id += 1

        logger.debug("Reference item inserted", reference_id=item.id, label=label, space=space.name)
        return item

    def query_by_vector(self, vector: Sequence[float], space: EmbeddingSpace,
                        threshold: float, limit: int) -> List[VectorHit]:
        query = np.asarray(self.ensure_compatible(vector, space), dtype=np.float64)
        with self._lock:
            items = sorted(self._items.values(), key=lambda item: item.id)
        if not items:
            return []

        matrix = np.asarray([item.embedding for item in items], dtype=np.float64)
        similarities = cosine_similarity(query, matrix)

        hits = [
            (item.id, item.label, float(score))
            for item, score in zip(items, similarities)
            if score > threshold
        ]
        hits.sort(key=lambda hit: (-hit[2], hit[0]))

        logger.debug("Vector query completed", results_count=len(hits[:limit]), threshold=threshold)
        return hits[:limit]

    def query_by_name(self, token: str, limit: int) -> List[NameHit]:
        needle = token.lower()
        with self._lock:
            items = sorted(self._items.values(), key=lambda item: item.id)
        hits = [(item.id, item.label) for item in items if needle in item.label.lower()]
        return hits[:limit]

    def get(self, reference_id: int) -> Optional[ReferenceItem]:
        with self._lock:
            return self._items.get(reference_id)

    def count(self) -> int:
        with self._lock:
            return len(self._items)

    @classmethod
    def from_records(cls, space: EmbeddingSpace, records: Iterable[Dict[str, Any]]) -> "InMemoryReferenceStore":
        """
        Build a store from exported records.

        Each record has ``label``, ``embedding`` (a JSON array string or a
        list) and an optional ``content_type``.
        """
        store = cls(space)
        for record in records:
            embedding = record.get("embedding")
            if isinstance(embedding, str):
                embedding = deserialize_embedding(embedding)
            elif isinstance(embedding, list):
                embedding = deserialize_embedding(json.dumps(embedding))
            else:
                raise DataIntegrityError(f"Record {record.get('label')!r} has no embedding")
            store.insert(
                record["label"],
                embedding,
                space,
                MediaType(record.get("content_type", MediaType.IMAGE.value)),
            )
        logger.info("In-memory reference store loaded", count=store.count(), space=space.name)
        return store

    @classmethod
    def from_json_file(cls, space: EmbeddingSpace, path: str) -> "InMemoryReferenceStore":
        with open(path, "r") as f:
            records = json.load(f)
        return cls.from_records(space, records)
