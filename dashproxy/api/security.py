"""Password, session-token and client checks for the dashboard API."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import bcrypt
from fastapi import Request
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class AuthError(Exception):
    """Credential or token check failed."""

    def __init__(self, message: str, status_code: int = 401):
        super().__init__(message)
        self.status_code = status_code


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash. Malformed hashes never match."""
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        logger.error("ADMIN_PASSWORD_HASH is not a valid bcrypt hash")
        return False


def create_access_token(subject: str, secret: str, expires_minutes: int = 120) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": subject, "exp": expire}, secret, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str, secret: str) -> dict[str, Any]:
    """
    Verify a session token.

    Raises:
        AuthError: 403 if the token is invalid or expired
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthError("Invalid or expired token", status_code=403)
    if not payload.get("sub"):
        raise AuthError("Invalid or expired token", status_code=403)
    return payload


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """``Bearer abc`` -> ``abc``"""
    if not authorization:
        return None
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        return None
    return parts[1].strip()


def client_ip(request: Request) -> str:
    """Originating client address, honouring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def check_request(
    request: Request,
    *,
    api_secret: str,
    jwt_secret: str,
    allowed_ips: list[str],
) -> str:
    """
    Run the /api gate checks in order: IP allowlist, app token, session token.

    Returns:
        The verified username

    Raises:
        AuthError: 403 for blocked IP, bad app token or invalid session token;
                   401 for a missing session token
    """
    ip = client_ip(request)
    if allowed_ips and ip not in allowed_ips:
        logger.warning(f"Blocked IP: {ip}")
        raise AuthError("Forbidden - IP not allowed", status_code=403)

    # an unset secret never matches, not even a missing header
    if not api_secret or request.headers.get("x-app-token", "") != api_secret:
        raise AuthError("Forbidden - Invalid token", status_code=403)

    token = bearer_token(request.headers.get("authorization"))
    if not token:
        raise AuthError("Missing token", status_code=401)

    payload = decode_access_token(token, jwt_secret)
    return payload["sub"]
