from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.middleware.rate_limit import rate_limit_auth
from app.schemas.auth import AuthData, LoginRequest, RegisterRequest
from app.schemas.common import ApiResponse
from app.schemas.profile import UserResponse
from app.services.auth_service import AuthService

router = APIRouter()


@router.post("/register", response_model=ApiResponse[AuthData], status_code=status.HTTP_201_CREATED)
@rate_limit_auth()
async def register(
    request: Request,
    payload: RegisterRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Register with a +977 phone number, password and full name.
    Returns the created user and a bearer token.
    """
    user, token = await AuthService.register(
        db,
        phone_number=payload.phone_number,
        password=payload.password,
        full_name=payload.full_name,
    )
    return ApiResponse[AuthData](data=AuthData(user=UserResponse.model_validate(user), token=token))


@router.post("/login", response_model=ApiResponse[AuthData])
@rate_limit_auth()
async def login(
    request: Request,
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db)
):
    """Exchange phone number and password for a bearer token."""
    user, token = await AuthService.login(db, payload.phone_number, payload.password)
    return ApiResponse[AuthData](data=AuthData(user=UserResponse.model_validate(user), token=token))
