"""Database models."""
from app.models.user import User
from app.models.document import Document, DocumentType, DocumentStatus, OcrStatus
from app.models.analysis_result import AnalysisResult

__all__ = [
    "User",
    "Document",
    "DocumentType",
    "DocumentStatus",
    "OcrStatus",
    "AnalysisResult",
]
