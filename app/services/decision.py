import structlog

from app.config import NO_IDENTITY_SIMILARITY_THRESHOLD, MAX_MATCHES
from app.core.reference_store import ReferenceStore
from app.models.similarity import Verdict
from app.services.embedding import SignatureExtractor
from app.services.identity import extract_identity_name
from app.services.matcher import find_by_identity_name, find_similar_content

logger = structlog.get_logger()


def analyze_image(image: bytes, extractor: SignatureExtractor, store: ReferenceStore) -> Verdict:
    """
    Decide whether a normalized image matches protected content.

    A declared identity is treated as ground truth: if it names someone in
    the store the image is flagged on the name matches, and if it names
    someone who is not in the store the image is safe, whatever the vector
    similarity. Only anonymous subjects fall back to embedding similarity,
    held to the stricter no-identity threshold.
    """
    signature, description = extractor.extract_with_description(image)
    identity = extract_identity_name(description)

    if identity:
        logger.info("Identity declared in description", identity=identity)
        name_matches = find_by_identity_name(store, identity)
        if name_matches:
            verdict = Verdict.flagged(name_matches[:MAX_MATCHES])
        else:
            # A named but unlisted person is never flagged for resembling someone else
            verdict = Verdict.safe()
        logger.info("Image analysis completed", decided_by="identity_name",
                   status=verdict.status.value, matches_found=len(verdict.matches))
        return verdict

    vector_matches = find_similar_content(store, signature, threshold=NO_IDENTITY_SIMILARITY_THRESHOLD)
    verdict = Verdict.flagged(vector_matches[:MAX_MATCHES]) if vector_matches else Verdict.safe()
    logger.info("Image analysis completed", decided_by="embedding",
               status=verdict.status.value, matches_found=len(verdict.matches))
    return verdict
