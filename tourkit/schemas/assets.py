"""
Tourkit — Upload Schemas
==========================

What:  Value objects for the transfer side of the pipeline.
Why:   Every upload is described by immutable inputs (asset, destination,
       budget) and produces one terminal UploadResult. Nothing here persists
       across requests.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class AssetDescriptor(BaseModel):
    """
    What:  One binary payload (photo or document) to be transferred.
    Why frozen: AssetOptimizer returns a new descriptor; it never edits the
           caller's copy.
    """
    name: str = Field(description="Original file name")
    mime_type: str = Field(description="Content type, e.g. image/jpeg")
    data: bytes = Field(description="Raw body", repr=False)

    model_config = {"frozen": True}

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.mime_type.lower().startswith("image/")


class Destination(BaseModel):
    """Where an asset lands in object storage."""
    bucket: str = Field(min_length=1)
    object_path: str = Field(min_length=1)

    model_config = {"frozen": True}

    @property
    def locator(self) -> str:
        return f"{self.bucket}/{self.object_path.lstrip('/')}"


class UploadTask(BaseModel):
    """
    What:  One asset's bounded-retry transfer job.
    Owner: Exactly one UploadCoordinator.submit() call.

    Invariant:
        attempts made <= max_attempts + 1 (the initial try plus retries)
    """
    task_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:8])
    source_asset: AssetDescriptor
    destination: Destination
    max_attempts: int = Field(default=2, ge=0, le=10, description="Retries after the first attempt")
    timeout_ms: int = Field(default=60_000, ge=1, description="Per-attempt timeout")

    model_config = {"frozen": True}


AttemptOutcome = Literal["pending", "success", "transient_error", "auth_error"]


class TransferAttempt(BaseModel):
    """A single try inside one UploadTask's loop."""
    attempt_index: int = Field(ge=0)
    started_at: datetime
    outcome: AttemptOutcome = "pending"
    error: Optional[str] = None


class UploadResult(BaseModel):
    """
    What:  Terminal value of an upload.
    Who:   Returned by UploadCoordinator.submit() and POST /api/uploads.

    Exactly one of `locator` (success) or `error` (failure) is set.
    `error_code` is "terminal_auth_error" when the caller must sign in
    again and "transient_transport_error" when retries were exhausted.
    """
    task_id: str
    success: bool
    locator: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    attempts: List[TransferAttempt] = Field(default_factory=list)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)
