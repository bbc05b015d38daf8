import re
from datetime import date
from typing import Literal, Optional
from pydantic import Field, field_validator
from app.schemas.common import CamelModel, UTCDateTime

CONTACT_PHONE_PATTERN = re.compile(r"^\+?[0-9\s\-()]+$")


class UserResponse(CamelModel):
    """User as returned to the client (never includes the password hash)."""
    id: str
    phone_number: str
    full_name: str
    email: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    blood_type: Optional[str] = None
    allergies: Optional[str] = None
    chronic_conditions: Optional[str] = None
    emergency_contact_name: Optional[str] = None
    emergency_contact_phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: str = "Nepal"
    profile_complete: bool = False
    storage_used: int = 0
    storage_quota: int = 0
    created_at: UTCDateTime
    updated_at: UTCDateTime


class ProfileUpdateRequest(CamelModel):
    """Full profile replacement; the three required fields complete the profile."""
    full_name: str = Field(..., max_length=255)
    date_of_birth: date
    gender: Literal["male", "female", "other"]
    blood_type: Optional[Literal["A+", "A-", "B+", "B-", "AB+", "AB-", "O+", "O-"]] = None
    allergies: Optional[str] = None
    chronic_conditions: Optional[str] = None
    emergency_contact_name: Optional[str] = Field(default=None, max_length=255)
    emergency_contact_phone: Optional[str] = Field(default=None, max_length=20)

    @field_validator("full_name")
    @classmethod
    def full_name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Full name is required")
        return v

    @field_validator("emergency_contact_phone")
    @classmethod
    def contact_phone_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not CONTACT_PHONE_PATTERN.match(v):
            raise ValueError("Invalid phone number format")
        return v
