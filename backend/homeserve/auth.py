import base64
import hashlib
import hmac
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional, Set, Tuple

from fastapi import Header, HTTPException, status

from homeserve.models import Actor, ActorRole

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_HOURS = 24


def _load_token_ttl_hours() -> int:
    raw = os.getenv("AUTH_TOKEN_TTL_HOURS", str(DEFAULT_TOKEN_TTL_HOURS))
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid AUTH_TOKEN_TTL_HOURS=%r", raw)
        return DEFAULT_TOKEN_TTL_HOURS
    if value <= 0:
        logger.warning("Ignoring non-positive AUTH_TOKEN_TTL_HOURS=%r", raw)
        return DEFAULT_TOKEN_TTL_HOURS
    return value


def _load_admin_user_ids() -> Set[str]:
    raw = os.getenv("ADMIN_USER_IDS", "admin_1")
    return {item.strip() for item in raw.split(",") if item.strip()}


TOKEN_TTL_HOURS = _load_token_ttl_hours()
DEMO_PASSWORD = os.getenv("DEMO_PASSWORD", "homeserve-demo")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "homeserve-admin")
ADMIN_USER_IDS = _load_admin_user_ids()
_AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-insecure-secret-change-me")


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _b64urldecode(value: str) -> bytes:
    padding = "=" * ((4 - len(value) % 4) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def _sign(payload: bytes) -> bytes:
    return hmac.new(_AUTH_SECRET.encode("utf-8"), payload, hashlib.sha256).digest()


def check_credentials(user_id: str, password: str, role: ActorRole) -> bool:
    """Demo credential check. Administrators need an allow-listed id and their own password."""
    if role == ActorRole.ADMINISTRATOR:
        return user_id in ADMIN_USER_IDS and hmac.compare_digest(password, ADMIN_PASSWORD)
    return hmac.compare_digest(password, DEMO_PASSWORD)


def create_access_token(user_id: str, role: ActorRole) -> Tuple[str, str]:
    expiry = datetime.now(timezone.utc) + timedelta(hours=TOKEN_TTL_HOURS)
    payload = f"{user_id}|{role.value}|{int(expiry.timestamp())}".encode("utf-8")
    token = f"{_b64url(payload)}.{_b64url(_sign(payload))}"
    return token, expiry.isoformat()


def verify_access_token(token: str) -> Optional[Actor]:
    try:
        payload_part, sig_part = token.split(".", 1)
        payload = _b64urldecode(payload_part)
        sent_sig = _b64urldecode(sig_part)
        if not hmac.compare_digest(sent_sig, _sign(payload)):
            return None
        user_id, role, expiry_ts = payload.decode("utf-8").rsplit("|", 2)
        if datetime.now(timezone.utc).timestamp() > int(expiry_ts):
            return None
        return Actor(user_id=user_id, role=ActorRole(role))
    except ValueError:
        return None


def parse_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def resolve_request_actor(authorization: Optional[str]) -> Optional[Actor]:
    token = parse_bearer_token(authorization)
    if not token:
        return None
    return verify_access_token(token)


def require_actor(authorization: Optional[str] = Header(default=None)) -> Actor:
    actor = resolve_request_actor(authorization)
    if actor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing bearer token")
    return actor
