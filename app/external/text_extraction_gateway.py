import asyncio
import logging
import time
from typing import Any, Dict, List, Optional
from google.api_core import exceptions as google_exceptions
from google.api_core.client_options import ClientOptions
from google.cloud import vision
from pydantic import BaseModel, Field
from app.config import settings
from app.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenException,
    vision_api_circuit_breaker,
)
from app.core.logging_utils import sanitize_log_message

logger = logging.getLogger(__name__)

OCR_SUPPORTED_MIME_TYPES = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/bmp",
    "image/tiff",
})

# google.rpc.Code values: DEADLINE_EXCEEDED, RESOURCE_EXHAUSTED, UNAVAILABLE
RETRYABLE_RPC_CODES = frozenset({4, 8, 14})

UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"
TIMEOUT = "TIMEOUT"
API_ERROR = "API_ERROR"
QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
INTERNAL_ERROR = "INTERNAL_ERROR"
CIRCUIT_OPEN = "CIRCUIT_OPEN"


class TextExtractionError(Exception):
    """OCR failure classified for the retry policy."""

    def __init__(self, code: str, message: str, retryable: bool):
        self.code = code
        self.message = message
        self.retryable = retryable
        super().__init__(f"{code}: {message}")


class BoundingBox(BaseModel):
    text: str
    vertices: List[Dict[str, int]] = Field(default_factory=list)


class OcrResult(BaseModel):
    text: str
    confidence: float
    language: str = "en"
    bounding_boxes: List[BoundingBox] = Field(default_factory=list)


def average_confidence(annotations: List[Any]) -> float:
    """Mean of the positive per-token confidences as a percentage; 100 when there are none."""
    scores = [a.confidence for a in annotations if getattr(a, "confidence", 0) and a.confidence > 0]
    if not scores:
        return 100.0
    return sum(scores) / len(scores) * 100


class TextExtractionGateway:
    """OCR over Google Cloud Vision text detection."""

    def __init__(
        self,
        client: Optional[vision.ImageAnnotatorClient] = None,
        timeout: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._client = client
        self.timeout = timeout or settings.OCR_TIMEOUT_SECONDS
        self.circuit_breaker = circuit_breaker or vision_api_circuit_breaker

    @property
    def client(self) -> vision.ImageAnnotatorClient:
        if self._client is None:
            self._client = vision.ImageAnnotatorClient(
                client_options=ClientOptions(api_key=settings.GOOGLE_VISION_API_KEY)
            )
        return self._client

    def _detect(self, data: bytes):
        return self.client.text_detection(image=vision.Image(content=data))

    async def _detect_with_timeout(self, data: bytes):
        response = await asyncio.wait_for(asyncio.to_thread(self._detect, data), timeout=self.timeout)
        if response.error and response.error.code:
            raise TextExtractionError(
                API_ERROR,
                response.error.message or "Vision API returned an error",
                retryable=response.error.code in RETRYABLE_RPC_CODES,
            )
        return response

    async def extract_text(self, data: bytes, mime_type: str) -> OcrResult:
        """
        Extract printed or handwritten text from an image.

        Raises:
            TextExtractionError: classified by code, with ``retryable`` set
        """
        if (mime_type or "").lower() not in OCR_SUPPORTED_MIME_TYPES:
            logger.warning(sanitize_log_message("Unsupported OCR MIME type", MimeType=mime_type))
            raise TextExtractionError(
                UNSUPPORTED_TYPE,
                f"OCR not supported for {mime_type}. Only images are supported.",
                retryable=False,
            )

        start_time = time.monotonic()
        try:
            response = await self.circuit_breaker.call(self._detect_with_timeout, data)
        except TextExtractionError as e:
            logger.error(sanitize_log_message("Vision API error", Code=e.code, Error=e.message))
            raise
        except CircuitBreakerOpenException as e:
            raise TextExtractionError(CIRCUIT_OPEN, e.message, retryable=True) from e
        except asyncio.TimeoutError as e:
            raise TextExtractionError(
                TIMEOUT, f"OCR processing timed out after {self.timeout:g} seconds", retryable=True
            ) from e
        except google_exceptions.ResourceExhausted as e:
            raise TextExtractionError(QUOTA_EXCEEDED, "Google Vision API quota exceeded", retryable=False) from e
        except Exception as e:
            logger.error(sanitize_log_message("OCR extraction error", Error=str(e)))
            if "quota" in str(e).lower():
                raise TextExtractionError(QUOTA_EXCEEDED, "Google Vision API quota exceeded", retryable=False) from e
            raise TextExtractionError(
                INTERNAL_ERROR, str(e) or "Failed to extract text from image", retryable=True
            ) from e

        return self._to_result(response, time.monotonic() - start_time)

    def _to_result(self, response, elapsed: float) -> OcrResult:
        annotations = list(response.text_annotations)
        if not annotations:
            logger.info("No text detected in image")
            return OcrResult(text="", confidence=100.0, language="en")

        # First annotation is the full text; the rest are individual tokens
        full_text, tokens = annotations[0], annotations[1:]
        confidence = average_confidence(tokens)
        result = OcrResult(
            text=full_text.description or "",
            confidence=confidence,
            language=full_text.locale or "en",
            bounding_boxes=[
                BoundingBox(
                    text=token.description or "",
                    vertices=[{"x": v.x, "y": v.y} for v in token.bounding_poly.vertices],
                )
                for token in tokens
            ],
        )

        logger.info(
            f"OCR completed in {elapsed * 1000:.0f}ms. Extracted {len(result.text)} characters "
            f"with {confidence:.2f}% confidence"
        )
        if confidence < settings.OCR_LOW_CONFIDENCE_THRESHOLD:
            logger.warning(f"Low OCR confidence ({confidence:.2f}%) - image quality may be poor")
        return result
