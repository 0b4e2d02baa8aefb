"""
Pydantic models for similarity matching and response data structures.
"""

from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

class MatchType(str, Enum):
    """Enumeration of match types."""
    EMBEDDING = "embedding"
    IDENTITY_NAME = "identity_name"

class ContentStatus(str, Enum):
    """Enumeration of verdict statuses."""
    FLAGGED = "flagged"
    SAFE = "safe"

class Match(BaseModel):
    """Model for a match between an upload and a protected reference."""
    reference_id: int = Field(..., description="ID of the matched reference item")
    label: str = Field(..., description="Label of the matched reference item")
    similarity: float = Field(..., ge=0.0, le=1.0, description="Cosine similarity or policy score (0.0 to 1.0)")
    match_type: MatchType = Field(..., description="Signal that produced the match")

class Verdict(BaseModel):
    """Flagged/safe decision with up to three ranked matches."""
    status: ContentStatus
    matches: List[Match] = Field(default_factory=list)

    @classmethod
    def flagged(cls, matches: List[Match]) -> "Verdict":
        return cls(status=ContentStatus.FLAGGED, matches=matches)

    @classmethod
    def safe(cls) -> "Verdict":
        return cls(status=ContentStatus.SAFE, matches=[])

class FormattedMatch(BaseModel):
    """Match as presented to the client."""
    filename: str = Field(..., description="Label of the matched reference item")
    similarity: str = Field(..., description="Similarity as a percentage, e.g. '87.3%'")

class UploadResponse(BaseModel):
    """Response model for media upload and screening."""
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    status: ContentStatus = Field(..., description="flagged or safe")
    matches: List[FormattedMatch] = Field(default_factory=list, description="Top protected matches")
    processing_time: float = Field(..., alias="processingTime", description="Wall-clock processing time in seconds")

class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")

class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
