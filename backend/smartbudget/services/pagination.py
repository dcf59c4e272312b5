import base64
import binascii
import json
from typing import Any

PAGE_TOKEN_VERSION = 1


def encode_page_token(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_page_token(token: Any) -> dict[str, Any] | None:
    """Inverse of ``encode_page_token``. Never raises: any malformed input gives ``None``."""
    if not isinstance(token, str) or not token:
        return None
    padded = token + "=" * (-len(token) % 4)
    try:
        decoded = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
        payload = json.loads(decoded)
    except (UnicodeError, binascii.Error, ValueError):
        return None
    if not isinstance(payload, dict):
        return None
    return payload


def cursor_token(doc_id: str) -> str:
    return encode_page_token({"v": PAGE_TOKEN_VERSION, "id": doc_id})


def read_cursor_id(token: Any) -> str | None:
    payload = decode_page_token(token)
    if payload is None:
        return None
    version = payload.get("v")
    doc_id = payload.get("id")
    if isinstance(version, bool) or version != PAGE_TOKEN_VERSION:
        return None
    if not isinstance(doc_id, str) or not doc_id:
        return None
    return doc_id
