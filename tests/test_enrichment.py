"""
Tests for the enrichment processor and its worker queue.
"""
import asyncio
import pytest
from typing import List

from app.core.security import get_password_hash
from app.external.narrative_analysis_gateway import Insight, NarrativeAnalysis, NarrativeAnalysisError
from app.external.text_extraction_gateway import TIMEOUT, UNSUPPORTED_TYPE, TextExtractionError
from app.models.document import Document, DocumentStatus, OcrStatus
from app.models.user import User
from app.services.enrichment_queue import EnrichmentQueue
from app.services.enrichment_service import (
    EnrichmentError,
    EnrichmentJob,
    EnrichmentKind,
    EnrichmentProcessor,
)
from tests.conftest import FakeNarrativeAnalysisGateway, FakeTextExtractionGateway, TestSessionLocal


async def create_document(ocr_status=OcrStatus.PENDING) -> str:
    async with TestSessionLocal() as session:
        user = User(phone_number="+9779812345678", password_hash=get_password_hash("secret123"), full_name="Sita")
        session.add(user)
        await session.flush()
        document = Document(
            user_id=user.id,
            file_url="https://storage.test/bucket/doc.jpg",
            file_size=10,
            mime_type="image/jpeg",
            ocr_status=ocr_status,
            analysis=None,
        )
        session.add(document)
        await session.commit()
        return document.id


async def load_document(document_id: str) -> Document:
    async with TestSessionLocal() as session:
        return await session.get(Document, document_id)


def job(kind: EnrichmentKind, document_id: str, mime_type: str = "image/jpeg") -> EnrichmentJob:
    return EnrichmentJob(kind=kind, document_id=document_id, data=b"jpeg-bytes", mime_type=mime_type)


def processor(text_gateway=None, narrative_gateway=None) -> EnrichmentProcessor:
    return EnrichmentProcessor(
        text_gateway or FakeTextExtractionGateway(),
        narrative_gateway or FakeNarrativeAnalysisGateway(),
        session_factory=TestSessionLocal,
    )


class TestEnrichmentProcessor:

    async def test_ocr_stores_text(self, setup_database):
        document_id = await create_document()

        await processor().process(job(EnrichmentKind.OCR, document_id))

        document = await load_document(document_id)
        assert document.ocr_status == OcrStatus.COMPLETED
        assert document.status == DocumentStatus.PENDING_PROCESSING
        assert document.analysis.extracted_text == "Hemoglobin 13.5 g/dL"
        assert document.analysis.insights == []

    async def test_analysis_stores_summary_and_insights(self, setup_database):
        document_id = await create_document(ocr_status=None)
        narrative = FakeNarrativeAnalysisGateway(NarrativeAnalysis(
            extracted_text="Rx: Amoxicillin",
            summary="Prescription for an antibiotic.",
            insights=[Insight(category="medication", text="Amoxicillin 500mg")],
        ))

        await processor(narrative_gateway=narrative).process(job(EnrichmentKind.AI, document_id))

        document = await load_document(document_id)
        assert document.status == DocumentStatus.PROCESSED
        assert document.ocr_status is None
        assert document.analysis.extracted_text == "Rx: Amoxicillin"
        assert document.analysis.summary == "Prescription for an antibiotic."
        assert document.analysis.insights == [{"category": "medication", "text": "Amoxicillin 500mg"}]

    async def test_analysis_keeps_ocr_text(self, setup_database):
        document_id = await create_document()
        enrichment = processor()

        await enrichment.process(job(EnrichmentKind.OCR, document_id))
        await enrichment.process(job(EnrichmentKind.AI, document_id))

        document = await load_document(document_id)
        assert document.analysis.extracted_text == "Hemoglobin 13.5 g/dL"
        assert document.analysis.summary == "Complete blood count within normal ranges."

    async def test_ocr_after_analysis_updates_same_row(self, setup_database):
        document_id = await create_document()
        enrichment = processor()

        await enrichment.process(job(EnrichmentKind.AI, document_id))
        await enrichment.process(job(EnrichmentKind.OCR, document_id))

        document = await load_document(document_id)
        assert document.ocr_status == OcrStatus.COMPLETED
        assert document.status == DocumentStatus.PROCESSED
        assert document.analysis.summary == "Complete blood count within normal ranges."
        assert document.analysis.extracted_text == "Hemoglobin 13.5 g/dL"

    async def test_deleted_document_is_skipped(self, setup_database):
        text_gateway = FakeTextExtractionGateway()

        await processor(text_gateway=text_gateway).process(job(EnrichmentKind.OCR, "missing-document"))

        assert text_gateway.calls == 0

    async def test_ocr_error_is_classified(self, setup_database):
        document_id = await create_document()
        text_gateway = FakeTextExtractionGateway(errors=[TextExtractionError(TIMEOUT, "timed out", retryable=True)])

        with pytest.raises(EnrichmentError) as exc_info:
            await processor(text_gateway=text_gateway).process(job(EnrichmentKind.OCR, document_id))

        assert exc_info.value.retryable is True
        assert (await load_document(document_id)).ocr_status == OcrStatus.PROCESSING

    async def test_mark_failed_uses_job_track(self, setup_database):
        document_id = await create_document()
        enrichment = processor()

        await enrichment.mark_failed(job(EnrichmentKind.OCR, document_id))
        document = await load_document(document_id)
        assert document.ocr_status == OcrStatus.FAILED
        assert document.status == DocumentStatus.PENDING_PROCESSING

        await enrichment.mark_failed(job(EnrichmentKind.AI, document_id))
        assert (await load_document(document_id)).status == DocumentStatus.FAILED


class RecordingProcessor:
    """Processor double that fails according to a script."""

    def __init__(self, errors: List[Exception] = None):
        self.errors = list(errors or [])
        self.processed: List[EnrichmentJob] = []
        self.failed: List[EnrichmentJob] = []

    async def process(self, job: EnrichmentJob) -> None:
        if self.errors:
            raise self.errors.pop(0)
        self.processed.append(job)

    async def mark_failed(self, job: EnrichmentJob) -> None:
        self.failed.append(job)


async def run_queue(enrichment, *jobs, **options) -> EnrichmentQueue:
    queue = EnrichmentQueue(enrichment, workers=2, retry_backoff=0.01, **options)
    await queue.start()
    try:
        for queued_job in jobs:
            assert queue.submit(queued_job)
        await queue.drain()
        return queue
    finally:
        await queue.stop()


class TestEnrichmentQueue:

    async def test_processes_jobs(self):
        enrichment = RecordingProcessor()

        queue = await run_queue(enrichment, job(EnrichmentKind.OCR, "a"), job(EnrichmentKind.AI, "a"))

        assert len(enrichment.processed) == 2
        assert queue.stats()["processed"] == 2
        assert queue.stats()["running"] is False

    async def test_retries_transient_failures(self):
        enrichment = RecordingProcessor(errors=[
            EnrichmentError("busy", retryable=True),
            EnrichmentError("busy", retryable=True),
        ])

        queue = await run_queue(enrichment, job(EnrichmentKind.AI, "a"), max_attempts=3)

        assert len(enrichment.processed) == 1
        assert enrichment.processed[0].attempts == 3
        assert enrichment.failed == []
        assert queue.stats()["retried"] == 2

    async def test_gives_up_after_max_attempts(self):
        enrichment = RecordingProcessor(errors=[EnrichmentError("busy", retryable=True)] * 3)

        queue = await run_queue(enrichment, job(EnrichmentKind.OCR, "a"), max_attempts=3)

        assert enrichment.processed == []
        assert len(enrichment.failed) == 1
        assert queue.stats()["failed"] == 1

    async def test_permanent_failure_is_not_retried(self):
        enrichment = RecordingProcessor(errors=[EnrichmentError("OCR failed (UNSUPPORTED_TYPE)", retryable=False)])

        queue = await run_queue(enrichment, job(EnrichmentKind.OCR, "a"))

        assert len(enrichment.failed) == 1
        assert queue.stats()["retried"] == 0

    async def test_unexpected_exception_marks_failed(self):
        enrichment = RecordingProcessor(errors=[ValueError("bug")])

        await run_queue(enrichment, job(EnrichmentKind.AI, "a"))

        assert len(enrichment.failed) == 1

    async def test_submit_when_not_running(self):
        queue = EnrichmentQueue(RecordingProcessor())

        assert queue.submit(job(EnrichmentKind.OCR, "a")) is False

    async def test_full_queue_rejects(self):
        release = asyncio.Event()

        class BlockingProcessor(RecordingProcessor):
            async def process(self, job):
                await release.wait()
                await super().process(job)

        enrichment = BlockingProcessor()
        queue = EnrichmentQueue(enrichment, workers=1, max_size=1)
        await queue.start()
        try:
            assert queue.submit(job(EnrichmentKind.OCR, "a"))
            await asyncio.sleep(0.05)  # worker picks up the first job and blocks
            assert queue.submit(job(EnrichmentKind.OCR, "b"))
            assert queue.submit(job(EnrichmentKind.OCR, "c")) is False
            release.set()
            await queue.drain()
        finally:
            await queue.stop()

        assert [queued.document_id for queued in enrichment.processed] == ["a", "b"]

    async def test_stop_marks_queued_and_running_jobs_failed(self):
        class SlowProcessor(RecordingProcessor):
            async def process(self, job):
                await asyncio.sleep(5)
                await super().process(job)

        enrichment = SlowProcessor()
        queue = EnrichmentQueue(enrichment, workers=1)
        await queue.start()
        for document_id in ("a", "b", "c"):
            assert queue.submit(job(EnrichmentKind.OCR, document_id))
        await asyncio.sleep(0.05)  # worker is busy with "a"

        await queue.stop(timeout=0.1)

        assert enrichment.processed == []
        assert sorted(failed.document_id for failed in enrichment.failed) == ["a", "b", "c"]
        assert queue.stats()["failed"] == 3
        assert queue.stats()["running"] is False

    async def test_stop_marks_pending_retry_failed(self):
        enrichment = RecordingProcessor(errors=[EnrichmentError("busy", retryable=True)])
        queue = EnrichmentQueue(enrichment, workers=1, max_attempts=3, retry_backoff=30)
        await queue.start()
        assert queue.submit(job(EnrichmentKind.AI, "a"))
        await asyncio.sleep(0.05)  # first attempt fails and schedules a retry
        assert queue.stats()["retryPending"] == 1

        await queue.stop(timeout=0.1)

        assert [failed.document_id for failed in enrichment.failed] == ["a"]
        assert queue.stats()["retried"] == 1
        assert queue.stats()["failed"] == 1
        assert queue.stats()["retryPending"] == 0

    async def test_clean_stop_fails_nothing(self):
        enrichment = RecordingProcessor()

        await run_queue(enrichment, job(EnrichmentKind.OCR, "a"))

        assert enrichment.failed == []


class TestEndToEnd:

    async def test_unsupported_ocr_type_marks_track_failed(self, setup_database):
        document_id = await create_document()
        text_gateway = FakeTextExtractionGateway(
            errors=[TextExtractionError(UNSUPPORTED_TYPE, "OCR not supported", retryable=False)]
        )

        await run_queue(processor(text_gateway=text_gateway), job(EnrichmentKind.OCR, document_id, "application/pdf"))

        document = await load_document(document_id)
        assert document.ocr_status == OcrStatus.FAILED
        assert document.status == DocumentStatus.PENDING_PROCESSING

    async def test_analysis_retry_then_success(self, setup_database):
        document_id = await create_document(ocr_status=None)
        narrative = FakeNarrativeAnalysisGateway(errors=[NarrativeAnalysisError("overloaded", retryable=True)])

        await run_queue(processor(narrative_gateway=narrative), job(EnrichmentKind.AI, document_id))

        assert narrative.calls == 2
        assert (await load_document(document_id)).status == DocumentStatus.PROCESSED

    async def test_shutdown_during_retry_backoff_marks_track_failed(self, setup_database):
        document_id = await create_document(ocr_status=None)
        narrative = FakeNarrativeAnalysisGateway(errors=[NarrativeAnalysisError("overloaded", retryable=True)])
        queue = EnrichmentQueue(processor(narrative_gateway=narrative), workers=1, retry_backoff=30)
        await queue.start()
        assert queue.submit(job(EnrichmentKind.AI, document_id))
        await asyncio.sleep(0.2)

        await queue.stop(timeout=0.1)

        assert narrative.calls == 1
        assert (await load_document(document_id)).status == DocumentStatus.FAILED
