import base64
import json
import logging
import re
from typing import Any, List, Literal, Optional, get_args
import anthropic
from anthropic import AsyncAnthropic
from pydantic import BaseModel, Field
from app.config import settings
from app.core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerOpenException,
    anthropic_api_circuit_breaker,
)
from app.core.logging_utils import sanitize_log_message

logger = logging.getLogger(__name__)

InsightCategory = Literal[
    "medication",
    "diagnosis",
    "lab_result",
    "vital_sign",
    "allergy",
    "procedure",
    "recommendation",
    "general",
]
INSIGHT_CATEGORIES = get_args(InsightCategory)

ANALYSIS_TOOL_NAME = "record_document_analysis"

ANALYSIS_TOOL = {
    "name": ANALYSIS_TOOL_NAME,
    "description": "Record the analysis of a scanned medical document.",
    "input_schema": {
        "type": "object",
        "properties": {
            "extractedText": {
                "type": "string",
                "description": "All readable text in the document, verbatim. Empty if unreadable.",
            },
            "summary": {
                "type": "string",
                "description": "Two or three sentence plain-language summary of the document.",
            },
            "insights": {
                "type": "array",
                "description": "Key medical facts found in the document.",
                "items": {
                    "type": "object",
                    "properties": {
                        "category": {"type": "string", "enum": list(INSIGHT_CATEGORIES)},
                        "text": {"type": "string"},
                    },
                    "required": ["category", "text"],
                },
            },
        },
        "required": ["extractedText", "summary", "insights"],
    },
}

ANALYSIS_PROMPT = (
    "This is a medical document. Analyze it and record:\n"
    "1. The extracted text content (if readable)\n"
    "2. A brief summary of the document\n"
    "3. Key medical insights, each tagged with one category: "
    + ", ".join(INSIGHT_CATEGORIES)
    + ".\n"
    f"Use the {ANALYSIS_TOOL_NAME} tool for your answer."
)

CLAUDE_MEDIA_TYPES = {
    "image/jpeg": "image/jpeg",
    "image/jpg": "image/jpeg",
    "image/png": "image/png",
    "image/gif": "image/gif",
    "image/webp": "image/webp",
}

CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


class NarrativeAnalysisError(Exception):
    """Language model call failed; prose replies never raise this."""

    def __init__(self, message: str, retryable: bool):
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class Insight(BaseModel):
    category: InsightCategory = "general"
    text: str


class NarrativeAnalysis(BaseModel):
    extracted_text: Optional[str] = None
    summary: Optional[str] = None
    insights: List[Insight] = Field(default_factory=list)


def _coerce_insight(item: Any) -> Optional[Insight]:
    if isinstance(item, str):
        return Insight(category="general", text=item) if item.strip() else None
    if isinstance(item, dict) and isinstance(item.get("text"), str) and item["text"].strip():
        category = item.get("category")
        return Insight(
            category=category if category in INSIGHT_CATEGORIES else "general",
            text=item["text"],
        )
    return None


def analysis_from_payload(payload: dict) -> NarrativeAnalysis:
    """Build a NarrativeAnalysis from tool input or a JSON reply, tolerating loose shapes."""
    extracted_text = payload.get("extractedText", payload.get("extracted_text"))
    summary = payload.get("summary")
    raw_insights = payload.get("insights")
    if not isinstance(raw_insights, list):
        raw_insights = []

    insights = [insight for insight in map(_coerce_insight, raw_insights) if insight is not None]
    return NarrativeAnalysis(
        extracted_text=extracted_text if isinstance(extracted_text, str) else None,
        summary=summary if isinstance(summary, str) else None,
        insights=insights,
    )


def analysis_from_text(text: str) -> NarrativeAnalysis:
    """
    Interpret a plain text reply.

    JSON (optionally fenced) is parsed; anything else becomes the summary.
    """
    cleaned = CODE_FENCE.sub("", text.strip())
    try:
        payload = json.loads(cleaned)
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        return analysis_from_payload(payload)
    return NarrativeAnalysis(extracted_text="", summary=text.strip() or None, insights=[])


def parse_analysis_message(message) -> NarrativeAnalysis:
    for block in message.content:
        if getattr(block, "type", None) == "tool_use" and block.name == ANALYSIS_TOOL_NAME:
            if isinstance(block.input, dict):
                return analysis_from_payload(block.input)

    text = "".join(
        block.text for block in message.content if getattr(block, "type", None) == "text"
    )
    return analysis_from_text(text)


def build_content_block(data: bytes, mime_type: str) -> dict:
    encoded = base64.standard_b64encode(data).decode("ascii")
    if (mime_type or "").lower() == "application/pdf":
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": "application/pdf", "data": encoded},
        }
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": CLAUDE_MEDIA_TYPES.get((mime_type or "").lower(), "image/jpeg"),
            "data": encoded,
        },
    }


class NarrativeAnalysisGateway:
    """Summarizes a medical document with Claude, returning tagged insights."""

    def __init__(
        self,
        client: Optional[AsyncAnthropic] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self._client = client
        self.model = model or settings.ANTHROPIC_MODEL
        self.max_tokens = max_tokens or settings.ANTHROPIC_MAX_TOKENS
        self.circuit_breaker = circuit_breaker or anthropic_api_circuit_breaker

    @property
    def client(self) -> AsyncAnthropic:
        if self._client is None:
            # Retries are owned by the enrichment queue
            self._client = AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY, max_retries=0)
        return self._client

    async def _create_message(self, content_block: dict):
        return await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            tools=[ANALYSIS_TOOL],
            tool_choice={"type": "tool", "name": ANALYSIS_TOOL_NAME},
            messages=[
                {
                    "role": "user",
                    "content": [content_block, {"type": "text", "text": ANALYSIS_PROMPT}],
                }
            ],
        )

    async def analyze(self, data: bytes, mime_type: str) -> NarrativeAnalysis:
        """
        Analyze a document image or PDF.

        Raises:
            NarrativeAnalysisError: If the API call itself fails
        """
        try:
            message = await self.circuit_breaker.call(
                self._create_message, build_content_block(data, mime_type)
            )
        except CircuitBreakerOpenException as e:
            raise NarrativeAnalysisError(e.message, retryable=True) from e
        except (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError) as e:
            logger.error(sanitize_log_message("Anthropic API transient error", Error=str(e)))
            raise NarrativeAnalysisError(str(e), retryable=True) from e
        except anthropic.APIStatusError as e:
            logger.error(sanitize_log_message("Anthropic API error", Status=e.status_code, Error=str(e)))
            raise NarrativeAnalysisError(str(e), retryable=False) from e

        analysis = parse_analysis_message(message)
        logger.info(
            sanitize_log_message(
                "Document analysis completed",
                Model=self.model,
                InsightCount=len(analysis.insights),
                HasSummary=analysis.summary is not None
            )
        )
        return analysis
