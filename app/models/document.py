from sqlalchemy import Column, String, Text, BigInteger, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
import enum
from app.database import Base
from app.models.mixins import UUIDPrimaryKeyMixin, utcnow


class DocumentType(str, enum.Enum):
    """Semantic document type."""
    LAB_REPORT = "lab_report"
    PRESCRIPTION = "prescription"
    MEDICAL_CERTIFICATE = "medical_certificate"
    XRAY = "xray"
    CT_SCAN = "ct_scan"
    MRI = "mri"
    OTHER = "other"


class DocumentStatus(str, enum.Enum):
    """Overall processing status (driven by the AI analysis track)."""
    PENDING_PROCESSING = "pending_processing"
    PROCESSED = "processed"
    FAILED = "failed"


class OcrStatus(str, enum.Enum):
    """OCR track status; NULL on the row when OCR was never requested."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def enum_values(enum_cls):
    """Persist enum values (lab_report) rather than member names (LAB_REPORT)."""
    return [member.value for member in enum_cls]


class Document(UUIDPrimaryKeyMixin, Base):
    """Document model - one uploaded medical file and its enrichment state."""

    __tablename__ = "documents"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(SQLEnum(DocumentType, values_callable=enum_values), default=DocumentType.OTHER, nullable=False, index=True)
    title = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    file_url = Column(Text, nullable=False)
    thumbnail_url = Column(Text, nullable=True)  # 300x400 JPEG for list views
    file_size = Column(BigInteger, nullable=False)  # Size in bytes, as stored
    mime_type = Column(String(100), nullable=False)
    status = Column(SQLEnum(DocumentStatus, values_callable=enum_values), default=DocumentStatus.PENDING_PROCESSING, nullable=False)
    ocr_status = Column(SQLEnum(OcrStatus, values_callable=enum_values), nullable=True, index=True)
    uploaded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    # Relationships
    user = relationship("User", back_populates="documents", lazy="raise")
    analysis = relationship(
        "AnalysisResult",
        back_populates="document",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
