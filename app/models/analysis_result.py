from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from app.database import Base
from app.models.mixins import UUIDPrimaryKeyMixin, utcnow


class AnalysisResult(UUIDPrimaryKeyMixin, Base):
    """Enrichment output for a document (OCR text and/or AI analysis)."""

    __tablename__ = "document_ai_analysis"

    document_id = Column(
        String(36),
        ForeignKey("documents.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    extracted_text = Column(Text, nullable=True)
    summary = Column(Text, nullable=True)
    insights = Column(JSON, nullable=False, default=list)  # [{"category": ..., "text": ...}]
    processed_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    document = relationship("Document", back_populates="analysis", lazy="raise")
