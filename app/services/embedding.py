import base64
import io
import torch
import numpy as np
import requests
import structlog
import threading
from PIL import Image
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from transformers import CLIPProcessor, CLIPModel

from app.config import Settings
from app.core.errors import ConfigurationError, DataIntegrityError, ExtractionError
from app.core.utils import validate_embedding
from app.models.media import CLIP_IMAGE_SPACE, GEMINI_TEXT_SPACE, EmbeddingSpace, Signature

logger = structlog.get_logger()

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

IDENTITY_DESCRIPTION_PROMPT = """You are a biometric facial analysis system. Produce a description of the person in this image that stays the same for the SAME PERSON across different photos.

Describe ONLY permanent, identity-relevant structure:
- Face shape and length-to-width proportion
- Forehead height, brow ridge, hairline shape
- Eye shape, eye spacing, eye color, orbital structure
- Nose bridge, length, tip and nostril shape
- Lip fullness, mouth width, philtrum
- Cheekbones, jawline, chin shape and width
- Permanent markings: moles, birthmarks, scars, dimples, clefts

IGNORE everything transient. Do not mention clothing, accessories, makeup, hairstyle, background, setting, pose, camera angle, facial expression, lighting or image quality.

If the person is a recognizable public figure, give their full name.

OUTPUT FORMAT (use exactly this format):
CELEBRITY: [Full name if recognized, "Unknown" if not a public figure]
BIOMETRIC_SIGNATURE: [Continuous description using only the permanent features above]"""


def _build_session(total_retries: int = 2) -> requests.Session:
    """HTTP session with retry logic for transient upstream failures."""
    session = requests.Session()
    retry_strategy = Retry(
        total=total_retries,
        backoff_factor=0.5,
        status_forcelist=[500, 502, 503, 504],
        allowed_methods=frozenset({"POST"}),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def _checked_vector(values: List[float], space: EmbeddingSpace, backend: str) -> List[float]:
    """Reject partial, non-finite or all-zero vectors as extraction failures."""
    try:
        vector = validate_embedding(values, space)
    except DataIntegrityError as e:
        raise ExtractionError(f"{backend} returned an invalid embedding: {e}")
    if not np.any(np.asarray(vector)):
        raise ExtractionError(f"{backend} returned an all-zero embedding")
    return vector


class SignatureBackend(ABC):
    """One way of turning a normalized JPEG image into a signature."""

    name = "backend"
    space: EmbeddingSpace

    @abstractmethod
    def embed(self, image: bytes) -> Signature:
        """Raise ExtractionError on any failure."""
        pass


class GeminiDescriptionBackend(SignatureBackend):
    """
    Description-capable backend.

    The vision model writes a description of permanent facial structure and
    the embedding model turns that text into a 768 component vector. The
    description is returned on the signature so identity extraction never
    needs a second vision call.
    """

    name = "gemini"
    space = GEMINI_TEXT_SPACE

    def __init__(self, api_key: str,
                 vision_model: str = "gemini-2.0-flash",
                 embedding_model: str = "text-embedding-004",
                 timeout: float = 30.0,
                 base_url: str = GEMINI_API_BASE,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.vision_model = vision_model
        self.embedding_model = embedding_model
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self.session = session or _build_session()

    def _post(self, method: str, model: str, payload: dict) -> dict:
        url = f"{self.base_url}/models/{model}:{method}"
        try:
            response = self.session.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout,
            )
        except requests.Timeout:
            raise ExtractionError(f"Gemini {method} timed out after {self.timeout}s")
        except requests.RequestException as e:
            raise ExtractionError(f"Gemini {method} request failed: {e}")

        if response.status_code == 429:
            raise ExtractionError("Gemini API rate limit exceeded", retryable=True)
        if not response.ok:
            raise ExtractionError(f"Gemini API error: {response.status_code} - {response.text[:500]}")

        try:
            return response.json()
        except ValueError:
            raise ExtractionError(f"Gemini {method} returned a non-JSON response")

    def describe(self, image: bytes) -> str:
        """Vision-to-text description of permanent identity features."""
        payload = {
            "contents": [{
                "parts": [
                    {"text": IDENTITY_DESCRIPTION_PROMPT},
                    {"inlineData": {"mimeType": "image/jpeg", "data": base64.b64encode(image).decode("ascii")}},
                ]
            }],
            "generationConfig": {"temperature": 0.1, "maxOutputTokens": 600},
        }
        data = self._post("generateContent", self.vision_model, payload)
        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None
        if not text:
            raise ExtractionError("No description generated by Gemini vision model")
        return text

    def embed_text(self, text: str) -> List[float]:
        payload = {
            "model": f"models/{self.embedding_model}",
            "content": {"parts": [{"text": text}]},
        }
        data = self._post("embedContent", self.embedding_model, payload)
        values = (data.get("embedding") or {}).get("values")
        if not isinstance(values, list):
            raise ExtractionError("Unexpected response format from Gemini embedding model")
        return _checked_vector(values, self.space, self.name)

    def embed(self, image: bytes) -> Signature:
        description = self.describe(image)
        vector = self.embed_text(description)
        logger.debug("Gemini signature generated", embedding_dim=len(vector), description_length=len(description))
        return Signature(vector=vector, space=self.space, description=description)


def get_device() -> torch.device:
    """Get the best available device for inference."""
    if torch.cuda.is_available():
        return torch.device("cuda")
    if hasattr(torch.backends, 'mps') and torch.backends.mps.is_built() and torch.backends.mps.is_available():
        return torch.device("mps")
    return torch.device("cpu")


class ClipImageBackend(SignatureBackend):
    """Direct image-embedding backend using a local CLIP model (512 components, no text)."""

    name = "clip"
    space = CLIP_IMAGE_SPACE

    def __init__(self, model_name: str = "openai/clip-vit-base-patch32", hub_token: Optional[str] = None):
        self.model_name = model_name
        self.hub_token = hub_token
        self._model = None
        self._processor = None
        self._device = None
        self._load_lock = threading.Lock()

    def load(self) -> Tuple[CLIPModel, CLIPProcessor]:
        """Load CLIP model and processor once per backend instance."""
        with self._load_lock:
            if self._model is None or self._processor is None:
                try:
                    self._device = get_device()
                    logger.info("Loading CLIP model", model_name=self.model_name, device=str(self._device))

                    self._processor = CLIPProcessor.from_pretrained(self.model_name, token=self.hub_token)
                    model = CLIPModel.from_pretrained(self.model_name, token=self.hub_token)
                    model.to(self._device)
                    model.eval()
                    self._model = model

                    logger.info("CLIP model loaded successfully",
                               model_name=self.model_name,
                               parameters=sum(p.numel() for p in model.parameters()))
                except Exception as e:
                    logger.error("Failed to load CLIP model", model_name=self.model_name, error=str(e))
                    raise ExtractionError(f"Failed to load CLIP model: {e}")

        return self._model, self._processor

    def embed(self, image: bytes) -> Signature:
        model, processor = self.load()
        try:
            picture = Image.open(io.BytesIO(image))
            if picture.mode != 'RGB':
                picture = picture.convert('RGB')

            inputs = processor(images=picture, return_tensors="pt")
            inputs = {k: v.to(self._device) for k, v in inputs.items()}

            with torch.no_grad():
                features = model.get_image_features(**inputs)
                if not isinstance(features, torch.Tensor):
                    features = features.pooler_output
                features = torch.nn.functional.normalize(features, p=2, dim=1)
                values = features.cpu().numpy()[0].tolist()
        except Exception as e:
            logger.error("Failed to generate CLIP embedding", error=str(e))
            raise ExtractionError(f"CLIP embedding failed: {e}")

        vector = _checked_vector(values, self.space, self.name)
        logger.debug("CLIP signature generated", embedding_dim=len(vector))
        return Signature(vector=vector, space=self.space)


class SignatureExtractor:
    """
    Primary/fallback signature extraction.

    The primary backend is tried first. If it fails and a fallback is
    configured, the fallback's signature is used instead and a warning is
    logged. Results from different backends are never blended.
    """

    def __init__(self, primary: Optional[SignatureBackend] = None,
                 fallback: Optional[SignatureBackend] = None):
        self.primary = primary
        self.fallback = fallback

    @property
    def configured_backends(self) -> List[str]:
        return [backend.name for backend in (self.primary, self.fallback) if backend is not None]

    @property
    def default_space(self) -> EmbeddingSpace:
        """Space of the signatures produced when the first configured backend succeeds."""
        backend = self.primary or self.fallback
        if backend is None:
            raise ConfigurationError(
                "No embedding backend configured. Set GEMINI_API_KEY or HUGGINGFACE_API_KEY."
            )
        return backend.space

    def extract(self, image: bytes) -> Signature:
        if self.primary is None and self.fallback is None:
            raise ConfigurationError(
                "No embedding backend configured. Set GEMINI_API_KEY or HUGGINGFACE_API_KEY."
            )

        if self.primary is not None:
            try:
                return self.primary.embed(image)
            except ExtractionError as e:
                if self.fallback is None:
                    raise ExtractionError(f"{self.primary.name} embedding failed: {e}", retryable=e.retryable)
                logger.warning("Primary embedding backend failed, falling back",
                               primary=self.primary.name, fallback=self.fallback.name, error=str(e))

        try:
            return self.fallback.embed(image)
        except ExtractionError as e:
            raise ExtractionError(f"{self.fallback.name} embedding failed: {e}", retryable=e.retryable)

    def extract_with_description(self, image: bytes) -> Tuple[Signature, str]:
        """Signature and the description from the same generation call ("" if none)."""
        signature = self.extract(image)
        return signature, signature.description or ""


def build_signature_extractor(settings: Settings) -> SignatureExtractor:
    """Wire backends from configured API keys."""
    primary = None
    fallback = None
    if settings.gemini_api_key:
        primary = GeminiDescriptionBackend(
            api_key=settings.gemini_api_key,
            vision_model=settings.gemini_vision_model,
            embedding_model=settings.gemini_embedding_model,
            timeout=settings.backend_timeout_seconds,
        )
    if settings.huggingface_api_key:
        fallback = ClipImageBackend(
            model_name=settings.clip_model_name,
            hub_token=settings.huggingface_api_key,
        )
    if primary is None and fallback is not None:
        primary, fallback = fallback, None

    logger.info("Signature extractor configured",
               primary=primary.name if primary else None,
               fallback=fallback.name if fallback else None)
    return SignatureExtractor(primary=primary, fallback=fallback)
