import base64
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, HTTPException, status

from auditoryx.services.marketplace_store import marketplace_store


def _env_positive_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


TOKEN_TTL_HOURS = _env_positive_int("AUTH_TOKEN_TTL_HOURS", 24)
AUTH_REQUIRED = os.getenv("AUTH_REQUIRED", "false").lower() in {"1", "true", "yes"}
DEMO_PASSWORD = os.getenv("AUTH_DEMO_PASSWORD", "auditoryx-demo")
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def create_access_token(user_id: str) -> tuple[str, str]:
    expiry = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{user_id}|{int(expiry.timestamp())}".encode("utf-8")
    sig = hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()
    return f"{_b64url(payload)}.{_b64url(sig)}", expiry.isoformat()


def verify_access_token(token: str) -> Optional[str]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
    except (ValueError, TypeError):
        return None
    expected_sig = hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()
    if not hmac.compare_digest(sent_sig, expected_sig):
        return None
    try:
        user_id, expiry_ts = payload.decode("utf-8").split("|", 1)
        expires = int(expiry_ts)
    except (UnicodeDecodeError, ValueError):
        return None
    if datetime.now(timezone.utc).timestamp() > expires:
        return None
    return user_id


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_user(authorization: Optional[str]) -> Optional[str]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def require_authenticated_user(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = resolve_request_user(authorization)
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return user_id


def assert_actor_authorized(
    actor_user_id: str,
    authorization: Optional[str] = Header(default=None),
) -> None:
    token_user = resolve_request_user(authorization)
    if not token_user:
        if AUTH_REQUIRED:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
        return
    if token_user != actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Token user does not match actor user")


def is_admin(user_id: Optional[str]) -> bool:
    return bool(user_id) and marketplace_store.is_admin(user_id)


def require_admin(authorization: Optional[str] = Header(default=None)) -> str:
    user_id = require_authenticated_user(authorization)
    if not is_admin(user_id):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user_id


def assert_cron_or_admin(cron_secret: Optional[str], authorization: Optional[str]) -> str:
    """Scheduler calls carry the shared cron secret; everyone else must be an admin."""
    expected = os.getenv("CRON_SECRET", "").strip()
    if expected and cron_secret and hmac.compare_digest(cron_secret.strip(), expected):
        return "cron"
    token_user = resolve_request_user(authorization)
    if token_user and is_admin(token_user):
        return token_user
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Cron secret or admin token required")
