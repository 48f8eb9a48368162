"""
shared/utils/security.py
JWT creation/verification and webhook signature helpers.
"""

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    user_id: str,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """
    Create a signed JWT access token.
    Returns (token, jti); jti is used for deny-listing on logout.

    `extra` may carry role-scoped ids, e.g. {"booker": "<uuid>"}.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": expire,
        "type": "access",
        **(extra or {}),
    }

    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.
    Raises JWTError on invalid/expired token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    return payload


def get_token_remaining_ttl(payload: dict) -> int:
    """Returns seconds until token expiry. Used for JWT deny-list TTL."""
    exp = payload.get("exp", 0)
    remaining = exp - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


# ── Payment Webhook Signature ─────────────────────────────────

def sign_webhook_payload(payload_body: bytes, secret: Optional[str] = None) -> str:
    """HMAC-SHA256 hex digest of a raw webhook body."""
    key = (secret if secret is not None else settings.PAYMENT_WEBHOOK_SECRET).encode()
    return hmac.new(key, payload_body, hashlib.sha256).hexdigest()


def verify_webhook_signature(payload_body: bytes, signature: Optional[str]) -> bool:
    """Verify the gateway's X-Webhook-Signature header against the raw body."""
    if not signature:
        return False
    expected = sign_webhook_payload(payload_body)
    return hmac.compare_digest(expected, signature)


# ── Card Data ─────────────────────────────────────────────────

def mask_card_details(details: Optional[dict], is_card: bool) -> Optional[dict]:
    """Never persist a full card number or CVV: keep only the last four digits."""
    if not details:
        return details
    cleaned = dict(details)
    camel, snake = cleaned.pop("cardNumber", None), cleaned.pop("card_number", None)
    card_number = camel or snake
    cleaned.pop("cvv", None)
    if is_card and card_number:
        cleaned["cardLast4"] = str(card_number)[-4:]
    return cleaned
