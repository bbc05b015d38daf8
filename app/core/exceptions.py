import enum
from fastapi import HTTPException, status


class ErrorCode(str, enum.Enum):
    """Machine-readable error codes returned in the error envelope."""
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SERVER_ERROR = "SERVER_ERROR"
    DUPLICATE_PHONE = "DUPLICATE_PHONE"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    STORAGE_QUOTA_EXCEEDED = "STORAGE_QUOTA_EXCEEDED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    RATE_LIMITED = "RATE_LIMITED"


class AppException(HTTPException):
    """Base exception rendered as {success: false, error: {code, message}}."""

    code: ErrorCode = ErrorCode.SERVER_ERROR

    def __init__(self, detail: str, status_code: int, code: ErrorCode = None, headers: dict = None):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        if code is not None:
            self.code = code


class ValidationFailedException(AppException):
    """Exception raised when request data fails validation."""

    def __init__(self, detail: str = "Validation failed"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.VALIDATION_ERROR
        )


class WeakPasswordException(AppException):
    """Exception raised when a password does not meet the policy."""

    def __init__(self, detail: str = "Password does not meet requirements"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.WEAK_PASSWORD
        )


class InvalidCredentialsException(AppException):
    """Exception raised when login credentials do not match."""

    def __init__(self, detail: str = "Invalid phone number or password"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_401_UNAUTHORIZED,
            code=ErrorCode.INVALID_CREDENTIALS
        )


class UnauthorizedException(AppException):
    """Exception raised when the bearer token is missing."""

    def __init__(self, detail: str = "Access token is missing"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_401_UNAUTHORIZED,
            code=ErrorCode.UNAUTHORIZED,
            headers={"WWW-Authenticate": "Bearer"}
        )


class ForbiddenException(AppException):
    """Exception raised when the bearer token is invalid or expired."""

    def __init__(self, detail: str = "Invalid or expired token"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_403_FORBIDDEN,
            code=ErrorCode.FORBIDDEN
        )


class NotFoundException(AppException):
    """Exception raised when a resource does not exist or is not owned by the caller."""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_404_NOT_FOUND,
            code=ErrorCode.NOT_FOUND
        )


class DuplicatePhoneException(AppException):
    """Exception raised when a phone number is already registered."""

    def __init__(self, detail: str = "Phone number already registered"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_409_CONFLICT,
            code=ErrorCode.DUPLICATE_PHONE
        )


class FileTooLargeException(AppException):
    """Exception raised when an uploaded document exceeds the size ceiling."""

    def __init__(self, detail: str = "File exceeds size limit"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.FILE_TOO_LARGE
        )


class UnsupportedFileTypeException(AppException):
    """Exception raised when an uploaded document has a disallowed MIME type."""

    def __init__(self, detail: str = "Only JPEG, PNG, GIF, and PDF files are supported"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.UNSUPPORTED_FILE_TYPE
        )


class StorageQuotaExceededException(AppException):
    """Exception raised when an upload would exceed the user's storage quota."""

    def __init__(self, detail: str = "Storage quota exceeded"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_400_BAD_REQUEST,
            code=ErrorCode.STORAGE_QUOTA_EXCEEDED
        )


class ExternalServiceException(AppException):
    """Exception raised when an external service call fails on the request path."""

    def __init__(self, detail: str = "External service call failed"):
        super().__init__(
            detail=detail,
            status_code=status.HTTP_502_BAD_GATEWAY,
            code=ErrorCode.EXTERNAL_SERVICE_ERROR
        )
