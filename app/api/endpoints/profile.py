from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from app.api.deps import get_current_user_id
from app.database import get_db
from app.schemas.common import ApiResponse
from app.schemas.profile import ProfileUpdateRequest, UserResponse
from app.services.profile_service import ProfileService

router = APIRouter()


@router.get("", response_model=ApiResponse[UserResponse])
async def get_profile(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Current user's profile."""
    user = await ProfileService.get_profile(db, user_id)
    return ApiResponse[UserResponse](data=UserResponse.model_validate(user))


@router.put("", response_model=ApiResponse[UserResponse])
async def update_profile(
    payload: ProfileUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Replace the current user's medical profile.
    fullName, dateOfBirth and gender are required.
    """
    user = await ProfileService.update_profile(db, user_id, payload)
    return ApiResponse[UserResponse](data=UserResponse.model_validate(user))
