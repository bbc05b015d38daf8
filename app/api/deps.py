from functools import lru_cache
from typing import Optional
from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.exceptions import ForbiddenException, UnauthorizedException
from app.core.security import decode_access_token
from app.external.narrative_analysis_gateway import NarrativeAnalysisGateway
from app.external.storage_gateway import StorageGateway
from app.external.text_extraction_gateway import TextExtractionGateway
from app.services.document_service import DocumentService
from app.services.enrichment_queue import EnrichmentQueue


# HTTP Bearer scheme; missing credentials are reported as UNAUTHORIZED below
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Get the current user ID from the JWT without a database lookup.

    Raises:
        UnauthorizedException: 401 if no bearer token was sent
        ForbiddenException: 403 if the token is invalid, expired or has no subject
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedException()

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise ForbiddenException()

    user_id = payload.get("sub")
    if not user_id:
        raise ForbiddenException(detail="Invalid token payload")

    return str(user_id)


# Gateway dependencies; overridden in tests
@lru_cache
def get_storage_gateway() -> StorageGateway:
    """Get the shared StorageGateway instance."""
    return StorageGateway()


@lru_cache
def get_text_extraction_gateway() -> TextExtractionGateway:
    """Get the shared TextExtractionGateway instance."""
    return TextExtractionGateway()


@lru_cache
def get_narrative_analysis_gateway() -> NarrativeAnalysisGateway:
    """Get the shared NarrativeAnalysisGateway instance."""
    return NarrativeAnalysisGateway()


def get_enrichment_queue(request: Request) -> Optional[EnrichmentQueue]:
    """Get the application's enrichment queue (None before startup)."""
    return getattr(request.app.state, "enrichment_queue", None)


def get_document_service(
    storage: StorageGateway = Depends(get_storage_gateway),
    queue: Optional[EnrichmentQueue] = Depends(get_enrichment_queue),
) -> DocumentService:
    """Get DocumentService instance."""
    return DocumentService(storage=storage, queue=queue)
