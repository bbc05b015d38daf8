import re
from typing import Any, Dict, Optional
from fastapi import Request
from app.config import settings

MASK = "***MASKED***"

# Keys whose values are replaced entirely
SECRET_KEY_TERMS = ("password", "secret", "private_key", "api_key", "apikey", "token", "jwt", "authorization", "bearer")

# Medical free text never reaches the logs
MEDICAL_TEXT_KEYS = {
    "allergies",
    "chronic_conditions",
    "chronicconditions",
    "extracted_text",
    "extractedtext",
    "summary",
    "notes",
    "insights",
}

PHONE_IN_TEXT_PATTERN = re.compile(r"\+977\d{6}(\d{4})")


def _mask_phone(value: Any, mask_string: str) -> Any:
    """Keep only the last four digits of a phone number."""
    if isinstance(value, str) and len(value) > 4:
        return "*" * (len(value) - 4) + value[-4:]
    return mask_string


def mask_sensitive_data(data: Any, mask_string: str = MASK) -> Any:
    """
    Recursively mask sensitive data in dictionaries, lists, and strings.

    Args:
        data: Data structure to mask (dict, list, str, or other)
        mask_string: String to use for masking

    Returns:
        Masked data structure
    """
    if isinstance(data, dict):
        masked = {}
        for key, value in data.items():
            key_lower = str(key).lower()

            # Request IDs stay readable for traceability
            if key_lower in ("requestid", "request_id"):
                masked[key] = value
            elif any(term in key_lower for term in SECRET_KEY_TERMS):
                masked[key] = mask_string
            elif "phone" in key_lower:
                masked[key] = _mask_phone(value, mask_string)
            elif key_lower in MEDICAL_TEXT_KEYS:
                masked[key] = mask_string
            else:
                masked[key] = mask_sensitive_data(value, mask_string)

        return masked

    if isinstance(data, list):
        return [mask_sensitive_data(item, mask_string) for item in data]

    if isinstance(data, str):
        # JWTs start with eyJ
        if data.startswith("eyJ") and len(data) > 50:
            return mask_string
        return PHONE_IN_TEXT_PATTERN.sub(lambda m: "+977******" + m.group(1), data)

    return data


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """
    Mask sensitive HTTP headers.

    Args:
        headers: Dictionary of HTTP headers

    Returns:
        Dictionary with sensitive headers masked
    """
    sensitive_headers = ("authorization", "x-api-key", "cookie", "set-cookie")
    return {
        key: MASK if any(s in key.lower() for s in sensitive_headers) else value
        for key, value in headers.items()
    }


def get_request_id(request: Optional[Request]) -> Optional[str]:
    """
    Extract request ID from request state.

    Args:
        request: FastAPI Request object (can be None)

    Returns:
        Request ID (UUID string) or None if not available
    """
    if request and hasattr(request.state, "request_id"):
        return request.state.request_id
    return None


def sanitize_log_message(message: str, **kwargs: Any) -> str:
    """
    Build a log line "message | Key: value | ..." with sensitive values masked.

    A RequestID keyword is appended last so RequestIDFormatter can lift it
    into the [request-id] column.
    """
    request_id = kwargs.pop('RequestID', None) or kwargs.pop('request_id', None)

    context = mask_sensitive_data(kwargs) if settings.LOG_MASK_SENSITIVE else kwargs

    context_parts = []
    for key, value in context.items():
        if isinstance(value, (dict, list)):
            context_parts.append(f"{key}: {str(value)[:200]}")
        else:
            context_parts.append(f"{key}: {value}")

    formatted_message = f"{message} | {' | '.join(context_parts)}" if context_parts else message

    if request_id:
        formatted_message = f"{formatted_message} | RequestID: {request_id}"

    return formatted_message
