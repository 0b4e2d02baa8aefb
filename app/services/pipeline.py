import time
import structlog
from typing import List

from app.config import SUPPORTED_IMAGE_TYPES, SUPPORTED_VIDEO_TYPES
from app.core.errors import EmptyPayloadError, UnsupportedFormatError
from app.core.reference_store import ReferenceStore
from app.models.media import MediaType
from app.models.similarity import FormattedMatch, Match, UploadResponse
from app.services.consensus import analyze_video
from app.services.decision import analyze_image
from app.services.embedding import SignatureExtractor
from app.services.image_processing import normalize_image
from app.services.video_processing import DEFAULT_FFMPEG_TIMEOUT

logger = structlog.get_logger()


def detect_media_type(mime_type: str) -> MediaType:
    """Classify a declared MIME type; anything outside the allow-list is rejected."""
    if mime_type in SUPPORTED_IMAGE_TYPES:
        return MediaType.IMAGE
    if mime_type in SUPPORTED_VIDEO_TYPES:
        return MediaType.VIDEO
    raise UnsupportedFormatError(mime_type)


def format_similarity(similarity: float) -> str:
    """0.873 -> '87.3%'"""
    return f"{similarity * 100:.1f}%"


def format_matches(matches: List[Match]) -> List[FormattedMatch]:
    return [
        FormattedMatch(filename=match.label, similarity=format_similarity(match.similarity))
        for match in matches
    ]


def process_upload(data: bytes, mime_type: str, extractor: SignatureExtractor, store: ReferenceStore,
                   frame_workers: int = 1, ffmpeg_timeout: float = DEFAULT_FFMPEG_TIMEOUT) -> UploadResponse:
    """Screen one upload and build the timed response."""
    start_time = time.perf_counter()

    media_type = detect_media_type(mime_type)
    if not data:
        raise EmptyPayloadError("Uploaded file is empty")

    logger.info("Processing upload", media_type=media_type.value, mime_type=mime_type, size=len(data))

    if media_type == MediaType.IMAGE:
        verdict = analyze_image(normalize_image(data, mime_type), extractor, store)
    else:
        verdict = analyze_video(data, extractor, store,
                                frame_workers=frame_workers, ffmpeg_timeout=ffmpeg_timeout)

    processing_time = time.perf_counter() - start_time
    logger.info("Upload processed",
               media_type=media_type.value,
               status=verdict.status.value,
               matches_found=len(verdict.matches),
               processing_time=round(processing_time, 3))

    return UploadResponse(
        status=verdict.status,
        matches=format_matches(verdict.matches),
        processing_time=processing_time,
    )
