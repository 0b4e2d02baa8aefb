"""
Queries against the protected reference store.

Two independent signals: declared identity names matched against stored
labels, and cosine similarity between signature vectors.
"""

import math
import structlog
from typing import List, Optional

from app.config import DEFAULT_SIMILARITY_THRESHOLD, IDENTITY_NAME_SIMILARITY, MAX_MATCHES
from app.core.errors import DataIntegrityError
from app.core.reference_store import ReferenceStore
from app.models.media import Signature
from app.models.similarity import Match, MatchType

logger = structlog.get_logger()

MIN_TOKEN_LENGTH = 3


def identity_search_token(name: str) -> Optional[str]:
    """
    Most distinctive token of a name: the last word longer than two characters.

    "Taylor Swift" -> "swift"; "Al" -> None.
    """
    if not name:
        return None
    parts = [part for part in name.lower().split() if len(part) >= MIN_TOKEN_LENGTH]
    if not parts:
        return None
    return parts[-1]


def find_by_identity_name(store: ReferenceStore, name: str, limit: int = MAX_MATCHES) -> List[Match]:
    """Reference items whose label contains the name's search token.

    Every hit is scored with the fixed name-match confidence rather than a
    measured similarity.
    """
    token = identity_search_token(name)
    if token is None:
        logger.debug("No usable token in identity name", name=name)
        return []

    hits = store.query_by_name(token, limit)
    matches = []
    seen = set()
    for reference_id, label in hits:
        if reference_id in seen:
            continue
        seen.add(reference_id)
        matches.append(Match(
            reference_id=reference_id,
            label=label,
            similarity=IDENTITY_NAME_SIMILARITY,
            match_type=MatchType.IDENTITY_NAME,
        ))

    logger.info("Identity name search completed", name=name, token=token, matches_found=len(matches))
    return matches[:limit]
def find_similar_content(store: ReferenceStore, signature: Signature,
                         threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
                         limit: int = MAX_MATCHES) -> List[Match]:
    """Reference items with cosine similarity strictly above threshold, best first.

    Raises EmbeddingSpaceMismatchError if the signature's space differs from
    the store's, and DataIntegrityError if the store reports a similarity
    that is not a finite number above the threshold.
    """
    hits = store.query_by_vector(signature.vector, signature.space, threshold, limit)
    matches = []
    for reference_id, label, similarity in hits[:limit]:
        if not math.isfinite(similarity) or similarity <= threshold:
            raise DataIntegrityError(
                f"Reference {reference_id} returned invalid similarity {similarity} for threshold {threshold}"
            )
        matches.append(Match(
            reference_id=reference_id,
            label=label,
            # float rounding can put identical unit vectors a hair above 1.0
            similarity=min(1.0, similarity),
            match_type=MatchType.EMBEDDING,
        ))

    logger.info("Embedding similarity search completed",
               threshold=threshold,
               matches_found=len(matches),
               top_similarity=matches[0].similarity if matches else None)
    return matches
