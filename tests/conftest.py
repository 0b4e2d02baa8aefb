"""
Pytest configuration and fixtures
"""
import io
import math
import os

import pytest
from PIL import Image

# Never reach for a real database or real backends from tests
os.environ["REFERENCE_STORE"] = "memory"
os.environ.pop("GEMINI_API_KEY", None)
os.environ.pop("HUGGINGFACE_API_KEY", None)

from app.core.reference_store import InMemoryReferenceStore
from app.models.media import EmbeddingSpace, Signature
from app.services.embedding import SignatureBackend, SignatureExtractor

TEST_SPACE = EmbeddingSpace(kind="test", dimensions=4)


def vector_with_similarity(similarity, dimensions=4):
    """Unit vector whose cosine similarity with the first basis vector is ``similarity``."""
    vector = [0.0] * dimensions
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity ** 2))
    return vector


def basis_vector(index, dimensions=4):
    vector = [0.0] * dimensions
    vector[index] = 1.0
    return vector


def make_jpeg(width=64, height=48, color=(200, 30, 30)):
    output = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(output, format="JPEG")
    return output.getvalue()


class FakeBackend(SignatureBackend):
    """Backend that replays scripted (vector, description) pairs or raises scripted errors."""

    def __init__(self, outputs, space=TEST_SPACE, name="fake"):
        self.name = name
        self.space = space
        self.outputs = list(outputs)
        self.calls = 0

    def embed(self, image):
        output = self.outputs[min(self.calls, len(self.outputs) - 1)]
        self.calls += 1
        if isinstance(output, Exception):
            raise output
        vector, description = output
        return Signature(vector=vector, space=self.space, description=description)


@pytest.fixture
def store():
    return InMemoryReferenceStore(TEST_SPACE)


@pytest.fixture
def make_extractor():
    def _make(outputs):
        return SignatureExtractor(primary=FakeBackend(outputs))
    return _make
