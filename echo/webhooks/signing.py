"""HMAC-SHA256 signatures for outbound webhook payloads"""

import hashlib
import hmac
import json
from typing import Any, Optional, Union


def serialize_payload(payload: Any) -> bytes:
    """Compact JSON; these exact bytes are both signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_body(body: bytes, secret: Optional[str]) -> str:
    # A missing secret still yields a deterministic (but insecure) signature
    mac = hmac.new((secret or "").encode("utf-8"), msg=body, digestmod=hashlib.sha256)
    return f"sha256={mac.hexdigest()}"


def sign_payload(payload: Any, secret: Optional[str]) -> str:
    return sign_body(serialize_payload(payload), secret)


def verify_signature(body: Union[bytes, str], signature: Optional[str], secret: str) -> bool:
    """
    Subscriber-side check of X-Echo-Webhook-Signature.

    Args:
        body: Raw request body exactly as received
        signature: Header value, ``sha256=<hex>``
        secret: The subscription secret shown at creation

    Returns:
        True if the signature matches
    """
    if not signature:
        return False
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.compare_digest(sign_body(body, secret), signature)
