"""
Webhook signature verification for Mercado Pago notifications.

Mercado Pago signs each notification with the `x-signature` header
(`ts=<timestamp>,v1=<hex digest>`). The digest is an HMAC-SHA256, keyed with the
webhook secret, over the manifest `id:<data.id>;request-id:<x-request-id>;ts:<ts>;`.
"""

import hashlib
import hmac
from typing import Dict, Optional


def parse_signature_header(header: str) -> Dict[str, str]:
    parts = {}
    for chunk in header.split(","):
        key, sep, value = chunk.partition("=")
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def build_manifest(data_id: Optional[str], request_id: Optional[str], ts: str) -> str:
    manifest = ""
    if data_id:
        # alphanumeric ids are signed in lower case
        manifest += f"id:{data_id.lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"
    return manifest


def sign_manifest(secret: str, manifest: str) -> str:
    return hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()


def verify_webhook_signature(secret: str, signature_header: Optional[str],
                             request_id: Optional[str], data_id: Optional[str]) -> bool:
    """
    Returns True when `signature_header` is a valid Mercado Pago signature.

    Args:
        secret (str): Webhook secret configured in the Mercado Pago dashboard.
        signature_header (str, optional): Raw `x-signature` header value.
        request_id (str, optional): Raw `x-request-id` header value.
        data_id (str, optional): Payment id the notification refers to.
    """
    if not signature_header:
        return False
    parts = parse_signature_header(signature_header)
    ts = parts.get("ts")
    received = parts.get("v1")
    if not ts or not received:
        return False
    expected = sign_manifest(secret, build_manifest(data_id, request_id, ts))
    return hmac.compare_digest(expected.encode(), received.encode())
