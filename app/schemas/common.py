from datetime import datetime, timezone
from typing import Annotated, Generic, Optional, TypeVar
from pydantic import AfterValidator, BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; every stored timestamp is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, AfterValidator(as_utc)]


class CamelModel(BaseModel):
    """Base schema: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ErrorDetail(BaseModel):
    """Error body of the response envelope."""
    code: str
    message: str


class ApiResponse(CamelModel, Generic[T]):
    """Envelope for every API response: {success, data} or {success, error}."""
    success: bool = True
    data: Optional[T] = None
    error: Optional[ErrorDetail] = None
