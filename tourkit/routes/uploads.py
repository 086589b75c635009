"""
Tourkit — Upload Route Handler
================================

What:  POST /api/uploads: send one file to object storage with retries.
How:   Reads the multipart body, wraps it in an AssetDescriptor, and hands
       it to UploadCoordinator with the caller's own bearer token as the
       credential.

Responses:
    201  UploadResult (success)
    400  empty file
    401  not signed in / storage rejected the token (no retries were spent)
    502  every attempt failed; message is the last attempt's reason
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile

from tourkit.exceptions import TerminalAuthError, TransientTransportError, ValidationError
from tourkit.schemas.assets import AssetDescriptor, UploadResult
from tourkit.schemas.common import ErrorResponse
from tourkit.dependencies import get_upload_coordinator
from tourkit.services.credentials import StaticCredentialProvider
from tourkit.services.upload_coordinator import UploadCoordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Uploads"])


@router.post(
    "/uploads",
    status_code=201,
    response_model=UploadResult,
    responses={
        400: {"description": "Empty file", "model": ErrorResponse},
        401: {"description": "Not signed in", "model": ErrorResponse},
        502: {"description": "Storage unreachable after retries", "model": ErrorResponse},
    },
    summary="Upload a photo or document",
    description=(
        "Stores the file at {bucket}/{path}. Images over 5MB are downscaled to at most "
        "2048px and re-encoded as JPEG first. Transient failures are retried with "
        "capped exponential backoff."
    ),
)
async def upload_asset(
    file: UploadFile = File(..., description="Photo or document to store"),
    bucket: str = Form(..., min_length=1),
    path: str = Form(..., min_length=1, description="Object path inside the bucket"),
    max_attempts: Optional[int] = Form(default=None, ge=0, le=10, description="Retries after the first attempt"),
    authorization: Optional[str] = Header(default=None),
    coordinator: UploadCoordinator = Depends(get_upload_coordinator),
) -> UploadResult:
    try:
        content = await file.read()
    finally:
        await file.close()

    if not content:
        raise ValidationError(message="The uploaded file is empty.", field="file")

    asset = AssetDescriptor(
        name=file.filename or "upload",
        mime_type=file.content_type or "application/octet-stream",
        data=content,
    )
    task = coordinator.new_task(asset, bucket=bucket, object_path=path, max_attempts=max_attempts)
    logger.info("[%s] Received upload %s (%d bytes)", task.task_id, asset.name, asset.size)

    result = await coordinator.submit(
        task,
        credentials=StaticCredentialProvider.from_authorization_header(authorization),
    )
    if result.success:
        return result

    context = {"task_id": result.task_id, "attempts": result.attempt_count}
    if result.error_code == "terminal_auth_error":
        raise TerminalAuthError(message=result.error or "Please sign in to upload files", context=context)
    raise TransientTransportError(message=result.error or "Upload failed", context=context)
