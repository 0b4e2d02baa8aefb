"""
Pydantic models for media, embedding spaces and reference corpus entries.
"""

from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum

class MediaType(str, Enum):
    """Enumeration of supported media types."""
    IMAGE = "image"
    VIDEO = "video"

class EmbeddingSpace(BaseModel):
    """
    Identifies the vector space an embedding lives in.

    Vectors from different spaces are never compared: a description-derived
    text embedding and a direct image embedding have unrelated geometry even
    when their widths happen to agree.
    """
    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="Backend family that produced the vector")
    dimensions: int = Field(..., gt=0, description="Number of vector components")

    @property
    def name(self) -> str:
        return f"{self.kind}-{self.dimensions}"

    def __str__(self) -> str:
        return self.name

GEMINI_TEXT_SPACE = EmbeddingSpace(kind="gemini-text", dimensions=768)
CLIP_IMAGE_SPACE = EmbeddingSpace(kind="clip-image", dimensions=512)
KNOWN_SPACES = {space.name: space for space in (GEMINI_TEXT_SPACE, CLIP_IMAGE_SPACE)}

def parse_embedding_space(name: str) -> EmbeddingSpace:
    """Resolve a space name such as ``gemini-text-768``."""
    try:
        return KNOWN_SPACES[name]
    except KeyError:
        raise ValueError(f"Unknown embedding space: {name}. Known spaces: {', '.join(KNOWN_SPACES)}")

class ReferenceItem(BaseModel):
    """A protected corpus entry."""
    id: int = Field(..., description="Store-assigned identifier")
    label: str = Field(..., description="Human-readable name, usually the source filename")
    embedding: List[float] = Field(..., description="Embedding vector")
    space: EmbeddingSpace
    content_type: MediaType = Field(default=MediaType.IMAGE)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class Signature(BaseModel):
    """Embedding derived from one normalized still image."""
    vector: List[float]
    space: EmbeddingSpace
    description: Optional[str] = Field(None, description="Vision-to-text description, if the backend produced one")
