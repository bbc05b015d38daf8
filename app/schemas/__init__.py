"""Pydantic schemas for request/response contracts."""
from app.schemas.common import (
    ApiResponse,
    CamelModel,
    ErrorDetail,
)
from app.schemas.auth import (
    RegisterRequest,
    LoginRequest,
    AuthData,
)
from app.schemas.profile import (
    UserResponse,
    ProfileUpdateRequest,
)
from app.schemas.document import (
    InsightResponse,
    AnalysisResponse,
    DocumentResponse,
    DocumentUploadOptions,
    DocumentUpdateRequest,
    StorageInfoResponse,
    StorageReconcileResponse,
)

__all__ = [
    "ApiResponse",
    "CamelModel",
    "ErrorDetail",
    "RegisterRequest",
    "LoginRequest",
    "AuthData",
    "UserResponse",
    "ProfileUpdateRequest",
    "InsightResponse",
    "AnalysisResponse",
    "DocumentResponse",
    "DocumentUploadOptions",
    "DocumentUpdateRequest",
    "StorageInfoResponse",
    "StorageReconcileResponse",
]
