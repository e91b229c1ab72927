"""Blob store access for issue images: presigned S3 URLs and object deletion."""

from __future__ import annotations

import re
import uuid
from datetime import timedelta
from typing import Iterable, List, Literal

import boto3
from botocore.client import Config

from civic_tracker.core.config import settings

PresignMethod = Literal["get_object", "put_object"]

ISSUE_PREFIX = "issues"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _s3_client():
    return boto3.client(
        "s3",
        region_name=settings.AWS_REGION,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        config=Config(signature_version="s3v4"),
    )


def _bucket(bucket: str | None = None) -> str:
    bucket_name = bucket or settings.S3_BUCKET_NAME
    if not bucket_name:
        raise ValueError("S3 bucket name is not configured")
    return bucket_name


def sanitise_filename(filename: str) -> str:
    """Strip directories and anything outside ``[A-Za-z0-9._-]``."""
    name = filename.replace("\\", "/").rsplit("/", 1)[-1]
    name = _UNSAFE_CHARS.sub("-", name).strip(".-")
    return name or "image"


def build_storage_path(filename: str) -> str:
    """Key for a new upload: ``issues/<uuid>/<sanitised filename>``."""
    return f"{ISSUE_PREFIX}/{uuid.uuid4()}/{sanitise_filename(filename)}"


def generate_presigned_url(
    key: str,
    method: PresignMethod,
    expires_in: int = 900,
    content_type: str | None = None,
    bucket: str | None = None,
) -> str:
    bucket_name = _bucket(bucket)

    client = _s3_client()
    params: dict[str, str] = {"Bucket": bucket_name, "Key": key}
    if method == "put_object" and content_type:
        params["ContentType"] = content_type

    return client.generate_presigned_url(
        ClientMethod=method,
        Params=params,
        ExpiresIn=expires_in,
    )


def generate_presigned_put(
    key: str,
    expires: timedelta = timedelta(minutes=15),
    content_type: str | None = None,
) -> str:
    return generate_presigned_url(
        key=key,
        method="put_object",
        expires_in=int(expires.total_seconds()),
        content_type=content_type,
    )


def generate_presigned_get(
    key: str,
    expires: timedelta = timedelta(minutes=15),
) -> str:
    return generate_presigned_url(
        key=key,
        method="get_object",
        expires_in=int(expires.total_seconds()),
    )


def delete_objects(keys: Iterable[str], bucket: str | None = None) -> List[str]:
    """
    Delete ``keys`` from the bucket in one request.

    Returns the keys S3 reported as deleted. Per-key failures are raised as
    ``RuntimeError`` so that the caller can decide whether to log them.
    """
    objects = [{"Key": key} for key in keys]
    if not objects:
        return []

    client = _s3_client()
    response = client.delete_objects(
        Bucket=_bucket(bucket),
        Delete={"Objects": objects, "Quiet": False},
    )
    errors = response.get("Errors") or []
    if errors:
        failed = ", ".join(f"{e.get('Key')} ({e.get('Code')})" for e in errors)
        raise RuntimeError(f"Failed to delete objects: {failed}")
    return [entry["Key"] for entry in response.get("Deleted", [])]
