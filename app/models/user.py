from sqlalchemy import Column, String, Boolean, Date, Text, BigInteger
from sqlalchemy.orm import relationship
from app.config import settings
from app.database import Base
from app.models.mixins import UUIDPrimaryKeyMixin, TimestampMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """User model - identity, medical profile and storage accounting."""

    __tablename__ = "users"

    phone_number = Column(String(20), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)

    # Medical profile
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(10), nullable=True)  # male, female, other
    blood_type = Column(String(5), nullable=True)
    allergies = Column(Text, nullable=True)
    chronic_conditions = Column(Text, nullable=True)
    emergency_contact_name = Column(String(255), nullable=True)
    emergency_contact_phone = Column(String(20), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=True)
    country = Column(String(100), default="Nepal", nullable=False)
    profile_complete = Column(Boolean, default=False, nullable=False)

    # Storage accounting (bytes); storage_used mirrors SUM(documents.file_size)
    storage_used = Column(BigInteger, default=0, nullable=False)
    storage_quota = Column(BigInteger, default=lambda: settings.DEFAULT_STORAGE_QUOTA, nullable=False)

    # Relationships
    documents = relationship(
        "Document",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )
