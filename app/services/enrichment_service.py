"""
Document enrichment: OCR and language model analysis run off the request path.

Each job owns one status track on the document. OCR moves ``ocr_status``
through processing to completed/failed; AI analysis moves ``status`` from
pending_processing to processed/failed. Both upsert the single
AnalysisResult row for the document, so whichever finishes last wins on the
fields they share.
"""
import enum
import logging
from typing import Any, Callable, Dict, Optional
from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import AsyncSessionLocal
from app.external.narrative_analysis_gateway import NarrativeAnalysisError, NarrativeAnalysisGateway
from app.external.text_extraction_gateway import TextExtractionError, TextExtractionGateway
from app.models.analysis_result import AnalysisResult
from app.models.document import Document, DocumentStatus, OcrStatus
from app.models.mixins import utcnow
from app.core.logging_utils import sanitize_log_message

logger = logging.getLogger(__name__)


class EnrichmentKind(str, enum.Enum):
    OCR = "ocr"
    AI = "ai"


class EnrichmentJob(BaseModel):
    kind: EnrichmentKind
    document_id: str
    data: bytes
    mime_type: str
    attempts: int = 0

    def describe(self) -> Dict[str, Any]:
        return {"Kind": self.kind.value, "DocumentID": self.document_id, "Attempt": self.attempts}


class EnrichmentError(Exception):
    """A job failed; ``retryable`` tells the queue whether another attempt may succeed."""

    def __init__(self, message: str, retryable: bool = False):
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class EnrichmentProcessor:
    """Runs a single enrichment job against the gateways and persists the outcome."""

    def __init__(
        self,
        text_gateway: TextExtractionGateway,
        narrative_gateway: NarrativeAnalysisGateway,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    ):
        self.text_gateway = text_gateway
        self.narrative_gateway = narrative_gateway
        self.session_factory = session_factory

    async def process(self, job: EnrichmentJob) -> None:
        if job.kind == EnrichmentKind.OCR:
            await self.run_ocr(job)
        else:
            await self.run_analysis(job)

    async def run_ocr(self, job: EnrichmentJob) -> None:
        if not await self._update_document(job.document_id, ocr_status=OcrStatus.PROCESSING):
            logger.info(sanitize_log_message("Document deleted before OCR started", **job.describe()))
            return

        try:
            result = await self.text_gateway.extract_text(job.data, job.mime_type)
        except TextExtractionError as e:
            raise EnrichmentError(f"OCR failed ({e.code}): {e.message}", retryable=e.retryable) from e

        stored = await self._store_analysis(
            job.document_id,
            analysis_fields={"extracted_text": result.text},
            document_fields={"ocr_status": OcrStatus.COMPLETED},
        )
        if stored:
            logger.info(
                sanitize_log_message(
                    "OCR completed",
                    DocumentID=job.document_id,
                    Characters=len(result.text),
                    Confidence=f"{result.confidence:.2f}%",
                    Language=result.language
                )
            )

    async def run_analysis(self, job: EnrichmentJob) -> None:
        # Overall status stays pending_processing while the analysis runs
        try:
            analysis = await self.narrative_gateway.analyze(job.data, job.mime_type)
        except NarrativeAnalysisError as e:
            raise EnrichmentError(f"AI analysis failed: {e.message}", retryable=e.retryable) from e

        analysis_fields = {
            "summary": analysis.summary,
            "insights": [insight.model_dump() for insight in analysis.insights],
        }
        # An empty model transcription does not erase text already found by OCR
        if analysis.extracted_text:
            analysis_fields["extracted_text"] = analysis.extracted_text

        stored = await self._store_analysis(
            job.document_id,
            analysis_fields=analysis_fields,
            document_fields={"status": DocumentStatus.PROCESSED},
        )
        if stored:
            logger.info(
                sanitize_log_message(
                    "AI analysis completed",
                    DocumentID=job.document_id,
                    InsightCount=len(analysis.insights)
                )
            )

    async def mark_failed(self, job: EnrichmentJob) -> None:
        """Record the terminal failure on the job's own status track."""
        if job.kind == EnrichmentKind.OCR:
            values = {"ocr_status": OcrStatus.FAILED}
        else:
            values = {"status": DocumentStatus.FAILED}
        await self._update_document(job.document_id, **values)

    async def _update_document(self, document_id: str, **values) -> bool:
        """Update status columns; False when the document no longer exists."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(Document)
                .where(Document.id == document_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount > 0

    async def _store_analysis(
        self,
        document_id: str,
        analysis_fields: Dict[str, Any],
        document_fields: Dict[str, Any],
    ) -> bool:
        """
        Upsert the AnalysisResult row and set the document's terminal status.

        Two tracks may insert concurrently; the loser of the unique constraint
        retries once as an update.
        """
        for attempt in range(2):
            async with self.session_factory() as session:
                document: Optional[Document] = await session.get(Document, document_id)
                if document is None:
                    logger.info(sanitize_log_message("Document deleted during enrichment", DocumentID=document_id))
                    return False

                if document.analysis is None:
                    document.analysis = AnalysisResult(document_id=document.id, **analysis_fields)
                else:
                    for field, value in analysis_fields.items():
                        setattr(document.analysis, field, value)
                    document.analysis.processed_at = utcnow()

                for field, value in document_fields.items():
                    setattr(document, field, value)

                try:
                    await session.commit()
                    return True
                except IntegrityError:
                    await session.rollback()
                    if attempt:
                        raise
        return False
