"""Presigned upload and download URLs for issue images."""

from datetime import timedelta

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from civic_tracker.core.config import settings
from civic_tracker.core.errors import StoreUnavailableError, ValidationError
from civic_tracker.core.permissions import Action, ensure_allowed
from civic_tracker.core.security import Actor, get_current_actor
from civic_tracker.schemas.common import success
from civic_tracker.schemas.issues import ALLOWED_IMAGE_TYPES
from civic_tracker.utils.blob_store import (
    ISSUE_PREFIX,
    build_storage_path,
    generate_presigned_get,
    generate_presigned_put,
)

router = APIRouter()


class PresignUploadRequest(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    content_type: str
    size: int = Field(..., gt=0)
    ttl_seconds: int = Field(900, ge=60, le=3600)

    @field_validator("content_type")
    @classmethod
    def validate_content_type(cls, value: str) -> str:
        value = value.lower()
        if value not in ALLOWED_IMAGE_TYPES:
            raise ValueError("Only image files are allowed")
        return value

    @field_validator("size")
    @classmethod
    def validate_size(cls, value: int) -> int:
        if value > settings.MAX_IMAGE_BYTES:
            raise ValueError(f"Image must be at most {settings.MAX_IMAGE_BYTES} bytes")
        return value


class PresignDownloadRequest(BaseModel):
    storage_path: str = Field(..., min_length=1, max_length=1024)
    ttl_seconds: int = Field(900, ge=60, le=3600)


def _presign(fn, **kwargs) -> str:
    try:
        return fn(**kwargs)
    except ValueError as exc:
        raise StoreUnavailableError(str(exc)) from exc
    except (BotoCoreError, ClientError) as exc:
        raise StoreUnavailableError("Failed to generate presigned URL") from exc


@router.post("/presign")
async def create_upload_url(
    request: PresignUploadRequest,
    actor: Actor = Depends(get_current_actor),
):
    """Presigned PUT for a new image; the issue later stores ``storage_path``."""
    ensure_allowed(actor, Action.UPLOAD_IMAGE)
    storage_path = build_storage_path(request.filename)
    url = _presign(
        generate_presigned_put,
        key=storage_path,
        expires=timedelta(seconds=request.ttl_seconds),
        content_type=request.content_type,
    )
    return success({"url": url, "storage_path": storage_path})


@router.post("/presign-download")
async def create_download_url(request: PresignDownloadRequest):
    if not request.storage_path.startswith(f"{ISSUE_PREFIX}/"):
        raise ValidationError("Unknown storage path")
    url = _presign(
        generate_presigned_get,
        key=request.storage_path,
        expires=timedelta(seconds=request.ttl_seconds),
    )
    return success({"url": url})
