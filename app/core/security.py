import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from jose import JWTError, jwt
from passlib.context import CryptContext
from app.config import settings

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Nepal mobile numbers: +977 followed by exactly 10 digits
PHONE_NUMBER_PATTERN = re.compile(r"^\+977\d{10}$")
PASSWORD_MIN_LENGTH = 8


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return pwd_context.hash(password)


def normalize_phone_number(phone_number: str) -> str:
    """Strip spaces and dashes a user may type between digit groups."""
    return re.sub(r"[\s-]", "", phone_number or "")


def validate_phone_number(phone_number: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a phone number against the +977XXXXXXXXXX format.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not PHONE_NUMBER_PATTERN.match(normalize_phone_number(phone_number)):
        return False, "Phone number must be in format +977XXXXXXXXXX (Nepal)"
    return True, None


def validate_password_strength(password: str) -> Tuple[bool, Optional[str]]:
    """
    Validate password policy: at least 8 characters and one digit.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        return False, f"Password must be at least {PASSWORD_MIN_LENGTH} characters long"
    if not re.search(r"\d", password):
        return False, "Password must contain at least one number"
    return True, None


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def create_user_token(user_id: str) -> str:
    """Create the bearer token issued on register/login; the payload is only the user id."""
    return create_access_token({"sub": str(user_id)})


def decode_access_token(token: str) -> Optional[dict]:
    """Decode and verify a JWT access token."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return payload
    except JWTError:
        return None
