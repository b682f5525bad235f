from __future__ import annotations

import re
import uuid
from functools import lru_cache
from typing import Any

import boto3

from ..settings import settings

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}

# Upload kind -> key prefix.
UPLOAD_KINDS = {
    "profile_image": "users/profile-images",
    "club_logo": "clubs/logos",
    "event_banner": "events/banners",
}


class AssetsNotConfigured(RuntimeError):
    pass


def get_assets_bucket_name() -> str:
    name = (settings.assets_bucket_name or "").strip()
    if not name:
        raise AssetsNotConfigured("ASSETS_BUCKET_NAME is not set")
    return name


def _safe_owner(owner_id: str | None) -> str:
    safe = (owner_id or "unassigned").strip() or "unassigned"
    return re.sub(r"[^a-zA-Z0-9_-]", "_", safe)[:80]


def make_key(*, kind: str, content_type: str, owner_id: str | None = None) -> str:
    prefix = UPLOAD_KINDS[kind]
    ext = ALLOWED_IMAGE_TYPES.get(content_type, "")
    return f"{prefix}/{_safe_owner(owner_id)}/{uuid.uuid4()}{ext}"


@lru_cache(maxsize=1)
def _s3_client():
    return boto3.client("s3", region_name=settings.aws_region)


def presign_put_object(*, key: str, content_type: str | None, expires_in: int = 900) -> dict[str, Any]:
    bucket = get_assets_bucket_name()
    params: dict[str, Any] = {"Bucket": bucket, "Key": key}
    if content_type:
        params["ContentType"] = str(content_type)

    url = _s3_client().generate_presigned_url(
        ClientMethod="put_object",
        Params=params,
        ExpiresIn=max(60, min(3600, int(expires_in or 900))),
    )
    return {"bucket": bucket, "key": key, "url": url}


def public_url(*, key: str) -> str:
    base = str(settings.assets_public_base_url or "").strip().rstrip("/")
    if base:
        return f"{base}/{key}"
    return f"https://{get_assets_bucket_name()}.s3.{settings.aws_region}.amazonaws.com/{key}"
