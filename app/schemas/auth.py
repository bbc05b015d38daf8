from pydantic import Field
from app.schemas.common import CamelModel
from app.schemas.profile import UserResponse


class RegisterRequest(CamelModel):
    """
    Request schema for registration.

    Phone format and password strength are checked by the auth service so
    that a malformed phone number is reported before any password rule.
    """
    phone_number: str
    password: str
    full_name: str = Field(..., min_length=1, max_length=255)


class LoginRequest(CamelModel):
    """Request schema for phone/password login."""
    phone_number: str
    password: str = Field(..., min_length=1)


class AuthData(CamelModel):
    """Payload returned by register and login."""
    user: UserResponse
    token: str
