"""HTTP routes for YouTube uploads."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ..exceptions import (
    AppError,
    ConfigurationError,
    CredentialsMissingError,
    FormatNotAllowedError,
    InvalidRequestError,
    NotFoundError,
    PlanLimitExceededError,
    ReauthorizationRequiredError,
    UnauthorizedError,
)
from ..security.rate_limit import rate_limited
from .upload_models import UploadChanges
from .upload_schemas import (
    ArchiveRequest,
    UploadCreateRequest,
    UploadUpdateRequest,
    upload_to_dict,
    usage_to_dict,
)
from .upload_service import UploadRequest, UploadService

router = APIRouter(
    prefix="/api/youtube",
    tags=["youtube"],
    dependencies=[Depends(rate_limited("general", "youtube"))],
)
logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[AppError], int, str]] = [
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST, "invalid_request"),
    (NotFoundError, status.HTTP_404_NOT_FOUND, "not_found"),
    (UnauthorizedError, status.HTTP_403_FORBIDDEN, "unauthorized"),
    (ReauthorizationRequiredError, status.HTTP_403_FORBIDDEN, "reauthorization_required"),
    (CredentialsMissingError, status.HTTP_403_FORBIDDEN, "credentials_missing"),
    (PlanLimitExceededError, status.HTTP_403_FORBIDDEN, "plan_limit_exceeded"),
    (FormatNotAllowedError, status.HTTP_403_FORBIDDEN, "format_not_allowed"),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR, "not_configured"),
]


def to_http_exception(exc: AppError) -> HTTPException:
    """Map a domain error onto the error envelope used by every route."""
    for error_type, status_code, reason in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return HTTPException(
                status_code=status_code,
                detail={"status": "error", "failure_reason": reason, "message": str(exc)},
            )
    logger.error("api.unhandled_app_error", extra={"error_type": exc.__class__.__name__})
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"status": "error", "failure_reason": "internal_error", "message": str(exc)},
    )


def get_upload_service(request: Request) -> UploadService:
    """Fetch upload service from application state."""
    try:
        return request.app.state.upload_service  # type: ignore[attr-defined]
    except AttributeError as exc:  # pragma: no cover
        raise RuntimeError("UploadService is not configured") from exc


@router.post("/upload", status_code=status.HTTP_201_CREATED)
async def create_upload(
    payload: UploadCreateRequest,
    service: UploadService = Depends(get_upload_service),
) -> dict:
    try:
        record = await service.create_upload(
            UploadRequest(
                owner_id=payload.user_id,
                file_id=payload.file_id,
                title=payload.title,
                description=payload.description,
                tags=payload.tags,
                thumbnail_url=payload.thumbnail_url,
                visibility=payload.privacy_status,
                scheduled_at=payload.scheduled_at,
            )
        )
    except AppError as exc:
        raise to_http_exception(exc) from exc
    return {
        "status": "ok",
        "message": "Upload queued for processing",
        "upload": upload_to_dict(record),
    }


@router.get("/uploads")
def list_uploads(
    user_id: str = Query(..., alias="userId"),
    include_archived: bool = Query(False, alias="includeArchived"),
    service: UploadService = Depends(get_upload_service),
) -> dict:
    records = service.list_uploads(user_id, include_archived=include_archived)
    return {"status": "ok", "uploads": [upload_to_dict(record) for record in records]}


@router.get("/limits")
def get_limits(
    user_id: str = Query(..., alias="userId"),
    service: UploadService = Depends(get_upload_service),
) -> dict:
    return {"status": "ok", "limits": usage_to_dict(service.get_limits(user_id))}


@router.put("/upload/{upload_id}")
async def update_upload(
    upload_id: str,
    payload: UploadUpdateRequest,
    service: UploadService = Depends(get_upload_service),
) -> dict:
    changes = UploadChanges(
        title=payload.title,
        description=payload.description,
        tags=payload.tags,
        visibility=payload.privacy_status,
    )
    try:
        record = await service.update_upload(upload_id, payload.user_id, changes)
    except AppError as exc:
        raise to_http_exception(exc) from exc
    return {"status": "ok", "upload": upload_to_dict(record)}


@router.put("/upload/{upload_id}/archive")
def archive_upload(
    upload_id: str,
    payload: ArchiveRequest,
    service: UploadService = Depends(get_upload_service),
) -> dict:
    try:
        record = service.set_archived(upload_id, payload.user_id, payload.archived)
    except AppError as exc:
        raise to_http_exception(exc) from exc
    return {"status": "ok", "upload": upload_to_dict(record)}


@router.post("/upload/{upload_id}/retry")
async def retry_upload(
    upload_id: str,
    user_id: str = Query(..., alias="userId"),
    service: UploadService = Depends(get_upload_service),
) -> dict:
    try:
        record = await service.retry_upload(upload_id, user_id)
    except AppError as exc:
        raise to_http_exception(exc) from exc
    return {"status": "ok", "upload": upload_to_dict(record)}


@router.delete("/upload/{upload_id}")
async def delete_upload(
    upload_id: str,
    user_id: str = Query(..., alias="userId"),
    service: UploadService = Depends(get_upload_service),
) -> dict:
    try:
        await service.delete_upload(upload_id, user_id)
    except AppError as exc:
        raise to_http_exception(exc) from exc
    return {"status": "ok", "message": "Upload deleted"}


@router.post("/process")
async def process_pending(service: UploadService = Depends(get_upload_service)) -> dict:
    report = await service.process_pending()
    return {"status": "ok", "report": report.as_dict()}
