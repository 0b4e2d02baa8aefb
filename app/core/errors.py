"""
Exception hierarchy shared by the matching pipeline and the HTTP layer.
"""


class MatcherError(Exception):
    """Base class for all pipeline errors."""
    pass


class InputError(MatcherError):
    """The upload itself is unusable; reported to the caller, never retried."""
    pass


class UnsupportedFormatError(InputError):
    def __init__(self, mime_type: str):
        self.mime_type = mime_type
        super().__init__(
            f"Unsupported format: {mime_type}. "
            "Accepted formats: JPEG, PNG, WebP, AVIF (images), MP4 (video)"
        )


class EmptyPayloadError(InputError):
    pass


class ConfigurationError(MatcherError):
    """Server-side misconfiguration, such as missing backend credentials."""
    pass


class ExtractionError(MatcherError):
    """A signature backend failed.

    ``retryable`` is set by the backend adapter when the upstream service
    reported a rate limit, so callers can tell the client to try again later.
    """

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class VideoProcessingError(MatcherError):
    pass


class DataIntegrityError(MatcherError):
    """Stored or computed vectors are malformed."""
    pass


class EmbeddingSpaceMismatchError(DataIntegrityError):
    pass
