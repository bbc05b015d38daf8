import logging
from typing import Optional, Tuple
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.exceptions import (
    DuplicatePhoneException,
    InvalidCredentialsException,
    ValidationFailedException,
    WeakPasswordException,
)
from app.core.logging_utils import sanitize_log_message
from app.core.security import (
    create_user_token,
    get_password_hash,
    normalize_phone_number,
    validate_password_strength,
    validate_phone_number,
    verify_password,
)
from app.models.user import User

logger = logging.getLogger(__name__)


class AuthService:
    """Phone/password registration and login."""

    @staticmethod
    def _checked_phone(phone_number: str) -> str:
        is_valid, error = validate_phone_number(phone_number)
        if not is_valid:
            raise ValidationFailedException(detail=error)
        return normalize_phone_number(phone_number)

    @staticmethod
    async def get_user_by_phone(db: AsyncSession, phone_number: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.phone_number == phone_number))
        return result.scalar_one_or_none()

    @staticmethod
    async def register(
        db: AsyncSession,
        phone_number: str,
        password: str,
        full_name: str,
    ) -> Tuple[User, str]:
        """
        Create a user and issue a token.

        The phone format is checked before any password rule.

        Raises:
            ValidationFailedException, WeakPasswordException, DuplicatePhoneException
        """
        phone_number = AuthService._checked_phone(phone_number)

        is_strong, error = validate_password_strength(password)
        if not is_strong:
            raise WeakPasswordException(detail=error)

        full_name = full_name.strip()
        if not full_name:
            raise ValidationFailedException(detail="Full name is required")

        if await AuthService.get_user_by_phone(db, phone_number):
            raise DuplicatePhoneException()

        user = User(
            phone_number=phone_number,
            password_hash=get_password_hash(password),
            full_name=full_name,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # Lost a race with a concurrent registration of the same number
            await db.rollback()
            raise DuplicatePhoneException()

        logger.info(sanitize_log_message("User registered", UserID=user.id, PhoneNumber=phone_number))
        return user, create_user_token(user.id)

    @staticmethod
    async def login(db: AsyncSession, phone_number: str, password: str) -> Tuple[User, str]:
        """
        Verify credentials and issue a token.

        Raises:
            ValidationFailedException: Malformed phone number
            InvalidCredentialsException: Unknown phone or wrong password
        """
        phone_number = AuthService._checked_phone(phone_number)

        user = await AuthService.get_user_by_phone(db, phone_number)
        if user is None or not verify_password(password, user.password_hash):
            logger.info(sanitize_log_message("Failed login attempt", PhoneNumber=phone_number))
            raise InvalidCredentialsException()

        logger.info(sanitize_log_message("User logged in", UserID=user.id))
        return user, create_user_token(user.id)
