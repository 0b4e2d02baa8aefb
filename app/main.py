import os
import mimetypes
import structlog
from contextlib import asynccontextmanager

from fastapi import FastAPI, UploadFile, File, Depends, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
import uvicorn

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from app import __version__
from app.config import Settings, get_settings
from app.core.database import PgVectorReferenceStore
from app.core.errors import (
    ConfigurationError, DataIntegrityError, ExtractionError, InputError,
    UnsupportedFormatError, VideoProcessingError
)
from app.core.reference_store import InMemoryReferenceStore, ReferenceStore
from app.core.utils import format_file_size
from app.models.media import GEMINI_TEXT_SPACE, EmbeddingSpace, parse_embedding_space
from app.models.similarity import ErrorResponse, HealthResponse, UploadResponse
from app.services.embedding import SignatureExtractor, build_signature_extractor
from app.services.pipeline import detect_media_type, process_upload
from app.services.video_processing import check_ffmpeg_installation

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def resolve_store_space(settings: Settings, extractor: SignatureExtractor) -> EmbeddingSpace:
    """Explicit EMBEDDING_SPACE wins; otherwise the space of the first configured backend."""
    if settings.embedding_space:
        return parse_embedding_space(settings.embedding_space)
    try:
        return extractor.default_space
    except ConfigurationError:
        logger.warning("No embedding backend configured, uploads will fail",
                       default_space=GEMINI_TEXT_SPACE.name)
        return GEMINI_TEXT_SPACE


def build_reference_store(settings: Settings, space: EmbeddingSpace) -> ReferenceStore:
    if settings.reference_store == "memory":
        if settings.reference_fixture:
            return InMemoryReferenceStore.from_json_file(space, settings.reference_fixture)
        return InMemoryReferenceStore(space)
    if settings.reference_store == "postgres":
        return PgVectorReferenceStore(
            settings.database_url,
            space,
            statement_timeout_ms=settings.db_statement_timeout_ms,
        )
    raise ConfigurationError(f"Unknown REFERENCE_STORE: {settings.reference_store}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting Protected Content Matcher API")
    settings = get_settings()
    try:
        extractor = build_signature_extractor(settings)
        space = resolve_store_space(settings, extractor)
        store = build_reference_store(settings, space)

        app.state.settings = settings
        app.state.extractor = extractor
        app.state.store = store
        logger.info("Reference store initialized",
                   backend=settings.reference_store, space=space.name)

        if store.check_connection():
            logger.info("Reference store connection verified")
        else:
            logger.warning("Reference store connection check failed")

    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutting down Protected Content Matcher API")
    if isinstance(store, PgVectorReferenceStore):
        store.close()

# Create FastAPI application
app = FastAPI(
    title="Protected Content Matcher API",
    description="Screens uploaded images and videos against a protected reference corpus",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid Input"},
        413: {"model": ErrorResponse, "description": "File Too Large"},
        429: {"model": ErrorResponse, "description": "Upstream Rate Limit"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()

def get_extractor(request: Request) -> SignatureExtractor:
    return request.app.state.extractor

def get_store(request: Request) -> ReferenceStore:
    return request.app.state.store


def error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message).model_dump(),
    )

@app.exception_handler(UnsupportedFormatError)
async def unsupported_format_handler(request: Request, exc: UnsupportedFormatError):
    logger.info("Rejected unsupported format", mime_type=exc.mime_type)
    return error_response(status.HTTP_400_BAD_REQUEST, "unsupported_format", str(exc))

@app.exception_handler(InputError)
async def input_error_handler(request: Request, exc: InputError):
    logger.info("Rejected invalid input", error=str(exc))
    return error_response(status.HTTP_400_BAD_REQUEST, "invalid_input", str(exc))

@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error", error=str(exc))
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "configuration_error", str(exc))

@app.exception_handler(ExtractionError)
async def extraction_error_handler(request: Request, exc: ExtractionError):
    if exc.retryable:
        logger.warning("Embedding backend rate limited", error=str(exc))
        return error_response(status.HTTP_429_TOO_MANY_REQUESTS, "rate_limit_exceeded",
                              "Please try again later")
    logger.error("Embedding generation failed", error=str(exc))
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "embedding_failed", str(exc))

@app.exception_handler(VideoProcessingError)
async def video_processing_error_handler(request: Request, exc: VideoProcessingError):
    logger.error("Video processing failed", error=str(exc))
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "video_processing_failed", str(exc))

@app.exception_handler(DataIntegrityError)
async def data_integrity_error_handler(request: Request, exc: DataIntegrityError):
    logger.error("Data integrity error", error=str(exc))
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "data_integrity_error", str(exc))

# Global exception handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled exception",
                url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "internal_server_error",
                          "An unexpected error occurred")


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Protected Content Matcher API",
        "version": __version__,
        "description": "Screens uploads against a protected reference corpus",
        "docs_url": "/docs",
        "health_url": "/health",
    }

@app.get("/health", response_model=HealthResponse)
async def health_check(extractor: SignatureExtractor = Depends(get_extractor),
                       store: ReferenceStore = Depends(get_store)):
    """Health check endpoint with component status."""
    try:
        store_healthy = await run_in_threadpool(store.check_connection)
        reference_count = await run_in_threadpool(store.count) if store_healthy else None
        ffmpeg_available = await run_in_threadpool(check_ffmpeg_installation)
        backends = extractor.configured_backends

        components = {
            "reference_store": "healthy" if store_healthy else "unhealthy",
            "embedding_backends": "healthy" if backends else "unconfigured",
            "ffmpeg": "healthy" if ffmpeg_available else "unavailable",
        }
        overall_status = "healthy" if all(value == "healthy" for value in components.values()) else "degraded"

        return HealthResponse(
            status=overall_status,
            version=__version__,
            components={
                **components,
                "configured_backends": backends,
                "embedding_space": store.space.name,
                "reference_count": reference_count,
            }
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(status="unhealthy", version=__version__, components={"error": str(e)})

@app.post("/upload", response_model=UploadResponse)
async def upload_media(
    file: UploadFile = File(..., description="Image or video to screen"),
    extractor: SignatureExtractor = Depends(get_extractor),
    store: ReferenceStore = Depends(get_store),
    settings: Settings = Depends(get_app_settings),
):
    """
    Screen an uploaded file against the protected reference corpus.

    Supports:
    - Images: JPEG, PNG, WebP, AVIF
    - Video: MP4

    Returns a flagged/safe status with up to three matches.
    """
    content_type = file.content_type or mimetypes.guess_type(file.filename or "")[0] or ""
    # Reject unsupported formats before reading the payload
    detect_media_type(content_type)

    too_large = f"File size exceeds maximum allowed size of {format_file_size(settings.max_file_size)}"
    if file.size and file.size > settings.max_file_size:
        return error_response(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "file_too_large", too_large)

    data = await file.read()
    if len(data) > settings.max_file_size:
        return error_response(status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "file_too_large", too_large)

    logger.info("Screening upload", filename=file.filename, content_type=content_type, size=len(data))
    return await run_in_threadpool(
        process_upload,
        data,
        content_type,
        extractor,
        store,
        frame_workers=settings.frame_workers,
        ffmpeg_timeout=settings.ffmpeg_timeout_seconds,
    )


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", 8000)),
        reload=os.getenv("DEBUG", "false").lower() == "true",
        log_config=None,  # We handle logging with structlog
    )
