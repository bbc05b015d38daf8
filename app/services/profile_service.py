import logging
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.exceptions import NotFoundException
from app.core.logging_utils import sanitize_log_message
from app.models.user import User
from app.schemas.profile import ProfileUpdateRequest

logger = logging.getLogger(__name__)


class ProfileService:
    """Read and update the medical profile of the current user."""

    @staticmethod
    async def get_profile(db: AsyncSession, user_id: str) -> User:
        user = await db.get(User, user_id, populate_existing=True)
        if user is None:
            raise NotFoundException(detail="User not found")
        return user

    @staticmethod
    async def update_profile(db: AsyncSession, user_id: str, data: ProfileUpdateRequest) -> User:
        """
        Replace the profile fields; optional fields left out are cleared.

        The profile is complete once name, date of birth and gender are set,
        which the request schema requires.
        """
        user = await ProfileService.get_profile(db, user_id)

        user.full_name = data.full_name
        user.date_of_birth = data.date_of_birth
        user.gender = data.gender
        user.blood_type = data.blood_type
        user.allergies = data.allergies or None
        user.chronic_conditions = data.chronic_conditions or None
        user.emergency_contact_name = data.emergency_contact_name or None
        user.emergency_contact_phone = data.emergency_contact_phone or None
        user.profile_complete = bool(data.full_name and data.date_of_birth and data.gender)

        await db.commit()
        logger.info(sanitize_log_message("Profile updated", UserID=user_id))
        return user
