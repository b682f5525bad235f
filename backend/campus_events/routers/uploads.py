from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Request
from pydantic import Field

from ..auth.rbac import current_user, forbidden
from ..auth.tokens import ROLE_ADMIN, ROLE_CLUB_LEADER
from ..errors import ServiceUnavailable
from ..observability.logging import get_logger
from ..schemas.common import SanitizedModel
from ..services import s3_assets
from ._responses import ok

router = APIRouter(tags=["uploads"])
log = get_logger("uploads")

# Club logos and event banners are managed by leaders and admins only.
_STAFF_KINDS = {"club_logo", "event_banner"}


class PresignRequest(SanitizedModel):
    kind: Literal["profile_image", "club_logo", "event_banner"]
    file_name: str = Field(..., min_length=1, max_length=255)
    content_type: Literal["image/jpeg", "image/png", "image/gif", "image/webp"]


@router.post("/presign")
def presign(body: PresignRequest, request: Request):
    user = current_user(request)
    if body.kind in _STAFF_KINDS and user.role not in (ROLE_ADMIN, ROLE_CLUB_LEADER):
        raise forbidden(user, [ROLE_ADMIN, ROLE_CLUB_LEADER])

    try:
        key = s3_assets.make_key(kind=body.kind, content_type=body.content_type, owner_id=user.sub)
        put = s3_assets.presign_put_object(key=key, content_type=body.content_type)
        url = s3_assets.public_url(key=key)
    except s3_assets.AssetsNotConfigured as e:
        log.warning("uploads_not_configured")
        raise ServiceUnavailable("File uploads are not configured", error_type="uploads_not_configured") from e

    log.info("upload_presigned", kind=body.kind, user_id=user.sub, key=key)
    return ok("Upload URL created", {**put, "public_url": url})
