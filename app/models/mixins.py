"""
Database model mixins for common functionality.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, String


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    """String UUID used as primary key."""
    return str(uuid.uuid4())


class UUIDPrimaryKeyMixin:
    """
    Mixin for a UUID string primary key.

    The value is generated client side so it is known before the row is flushed.
    """
    id = Column(String(36), primary_key=True, default=new_uuid, index=True)


class TimestampMixin:
    """
    Mixin for created_at / updated_at bookkeeping.

    Values are set on the Python side so they are available on the instance
    right after a flush, without a refresh round trip.
    """
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
