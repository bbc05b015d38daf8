"""
Tests for OCR text extraction (Vision client mocked).
"""
import time
import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock
from google.api_core import exceptions as google_exceptions

from app.core.circuit_breaker import CircuitBreaker, CircuitState, is_rejected_request
from app.external.text_extraction_gateway import (
    API_ERROR,
    CIRCUIT_OPEN,
    INTERNAL_ERROR,
    QUOTA_EXCEEDED,
    TIMEOUT,
    UNSUPPORTED_TYPE,
    TextExtractionError,
    TextExtractionGateway,
    average_confidence,
)


def annotation(description, confidence=0.0, locale="", vertices=((0, 0), (10, 0), (10, 5), (0, 5))):
    return SimpleNamespace(
        description=description,
        locale=locale,
        confidence=confidence,
        bounding_poly=SimpleNamespace(vertices=[SimpleNamespace(x=x, y=y) for x, y in vertices]),
    )


def vision_response(annotations=(), error_code=0, error_message=""):
    return SimpleNamespace(
        text_annotations=list(annotations),
        error=SimpleNamespace(code=error_code, message=error_message),
    )


@pytest.fixture
def vision_client():
    return MagicMock()


@pytest.fixture
def gateway(vision_client):
    return TextExtractionGateway(
        client=vision_client,
        timeout=2,
        circuit_breaker=CircuitBreaker(name="vision_test", failure_threshold=3),
    )


class TestExtractText:

    async def test_extracts_text_and_boxes(self, gateway, vision_client):
        vision_client.text_detection.return_value = vision_response([
            annotation("Paracetamol 500mg\nTwice daily", locale="en"),
            annotation("Paracetamol", confidence=0.9),
            annotation("500mg", confidence=0.8),
        ])

        result = await gateway.extract_text(b"jpeg-bytes", "image/jpeg")

        assert result.text == "Paracetamol 500mg\nTwice daily"
        assert result.language == "en"
        assert result.confidence == pytest.approx(85.0)
        assert [box.text for box in result.bounding_boxes] == ["Paracetamol", "500mg"]
        assert result.bounding_boxes[0].vertices[1] == {"x": 10, "y": 0}

    async def test_no_text_detected(self, gateway, vision_client):
        vision_client.text_detection.return_value = vision_response([])

        result = await gateway.extract_text(b"blank", "image/png")

        assert result.text == ""
        assert result.confidence == 100.0
        assert result.language == "en"
        assert result.bounding_boxes == []

    async def test_unsupported_type(self, gateway, vision_client):
        with pytest.raises(TextExtractionError) as exc_info:
            await gateway.extract_text(b"%PDF", "application/pdf")

        assert exc_info.value.code == UNSUPPORTED_TYPE
        assert exc_info.value.retryable is False
        vision_client.text_detection.assert_not_called()

    async def test_timeout(self, vision_client):
        vision_client.text_detection.side_effect = lambda image: time.sleep(0.3)
        gateway = TextExtractionGateway(
            client=vision_client, timeout=0.05, circuit_breaker=CircuitBreaker(name="vision_test")
        )

        with pytest.raises(TextExtractionError) as exc_info:
            await gateway.extract_text(b"jpeg", "image/jpeg")

        assert exc_info.value.code == TIMEOUT
        assert exc_info.value.retryable is True

    @pytest.mark.parametrize("rpc_code, retryable", [(14, True), (8, True), (3, False)])
    async def test_api_error_in_response(self, gateway, vision_client, rpc_code, retryable):
        vision_client.text_detection.return_value = vision_response(error_code=rpc_code, error_message="Bad image data")

        with pytest.raises(TextExtractionError) as exc_info:
            await gateway.extract_text(b"jpeg", "image/jpeg")

        assert exc_info.value.code == API_ERROR
        assert exc_info.value.message == "Bad image data"
        assert exc_info.value.retryable is retryable

    async def test_quota_exhausted(self, gateway, vision_client):
        vision_client.text_detection.side_effect = google_exceptions.ResourceExhausted("Quota exceeded for quota metric")

        with pytest.raises(TextExtractionError) as exc_info:
            await gateway.extract_text(b"jpeg", "image/jpeg")

        assert exc_info.value.code == QUOTA_EXCEEDED
        assert exc_info.value.retryable is False

    async def test_unexpected_error(self, gateway, vision_client):
        vision_client.text_detection.side_effect = ConnectionResetError("connection reset by peer")

        with pytest.raises(TextExtractionError) as exc_info:
            await gateway.extract_text(b"jpeg", "image/jpeg")

        assert exc_info.value.code == INTERNAL_ERROR
        assert exc_info.value.retryable is True

    async def test_open_circuit_fails_fast(self, gateway, vision_client):
        vision_client.text_detection.side_effect = ConnectionResetError("connection reset by peer")
        for _ in range(3):
            with pytest.raises(TextExtractionError):
                await gateway.extract_text(b"jpeg", "image/jpeg")

        with pytest.raises(TextExtractionError) as exc_info:
            await gateway.extract_text(b"jpeg", "image/jpeg")

        assert exc_info.value.code == CIRCUIT_OPEN
        assert exc_info.value.retryable is True
        assert vision_client.text_detection.call_count == 3


class TestAverageConfidence:

    def test_ignores_missing_scores(self):
        tokens = [SimpleNamespace(confidence=0.5), SimpleNamespace(confidence=0.0), SimpleNamespace(confidence=1.0)]

        assert average_confidence(tokens) == pytest.approx(75.0)

    def test_no_scores(self):
        assert average_confidence([SimpleNamespace(confidence=0.0)]) == 100.0


class TestRejectedImages:

    async def test_invalid_images_keep_circuit_closed(self, vision_client):
        breaker = CircuitBreaker(name="vision_test", failure_threshold=3, exclude=is_rejected_request)
        gateway = TextExtractionGateway(client=vision_client, timeout=2, circuit_breaker=breaker)
        vision_client.text_detection.return_value = vision_response(error_code=3, error_message="Bad image data")

        for _ in range(5):
            with pytest.raises(TextExtractionError) as exc_info:
                await gateway.extract_text(b"corrupt", "image/jpeg")
            assert exc_info.value.code == API_ERROR

        vision_client.text_detection.return_value = vision_response([annotation("BP 120/80", locale="en")])
        result = await gateway.extract_text(b"jpeg", "image/jpeg")

        assert result.text == "BP 120/80"
        assert breaker.state == CircuitState.CLOSED

    async def test_unavailable_service_still_opens_circuit(self, vision_client):
        breaker = CircuitBreaker(name="vision_test", failure_threshold=3, exclude=is_rejected_request)
        gateway = TextExtractionGateway(client=vision_client, timeout=2, circuit_breaker=breaker)
        vision_client.text_detection.return_value = vision_response(error_code=14, error_message="Unavailable")

        for _ in range(3):
            with pytest.raises(TextExtractionError):
                await gateway.extract_text(b"jpeg", "image/jpeg")

        assert breaker.state == CircuitState.OPEN
