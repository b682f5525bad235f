from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..settings import settings

SUBJECT_MAX = 200


@lru_cache(maxsize=1)
def _sesv2_client():
    return boto3.client("sesv2", region_name=settings.aws_region)


def send_text_email(*, to_email: str, subject: str, text: str, kind: str | None = None) -> dict[str, Any]:
    """
    Send a plain-text message through SES v2.

    `kind` (e.g. "email_verification") is attached as an SES message tag so
    deliveries can be broken down per notification type. Returns
    `{"ok": True, "messageId": ...}` or `{"ok": False, "error": ...}`.
    """
    recipient = str(to_email or "").strip()
    sender = str(settings.email_from or "").strip()
    if not recipient or not sender:
        return {"ok": False, "error": "missing_to_or_from"}

    request: dict[str, Any] = {
        "FromEmailAddress": sender,
        "Destination": {"ToAddresses": [recipient]},
        "Content": {
            "Simple": {
                "Subject": {"Data": str(subject or "").strip()[:SUBJECT_MAX] or "Campus Events", "Charset": "UTF-8"},
                "Body": {"Text": {"Data": str(text or "").strip() or "(empty)", "Charset": "UTF-8"}},
            }
        },
    }
    if kind:
        request["EmailTags"] = [{"Name": "kind", "Value": kind}]

    try:
        resp = _sesv2_client().send_email(**request)
    except ClientError as e:
        return {"ok": False, "error": e.response.get("Error", {}).get("Code") or "ses_client_error"}
    except BotoCoreError as e:
        return {"ok": False, "error": type(e).__name__}
    return {"ok": True, "messageId": (resp or {}).get("MessageId")}
