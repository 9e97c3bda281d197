"""
Authentication for the FastAPI API.

Passwords are hashed with bcrypt and sessions are stateless HS256 JWTs
carrying the user id. Protected routes depend on ``verify_token``.
"""

import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Dict, Optional

import bcrypt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

logger = structlog.get_logger(__name__)

# Missing credentials are reported by verify_token, not by the scheme
security = HTTPBearer(auto_error=False)

# bcrypt ignores (or rejects) anything past 72 bytes
MAX_PASSWORD_BYTES = 72


def hash_password(password: str, rounds: int = 10) -> str:
    """
    Hash a password with a fresh random salt.

    Args:
        password: Plain-text password
        rounds: bcrypt cost factor

    Returns:
        bcrypt hash as text

    Raises:
        ValueError: If the password is longer than bcrypt accepts
    """
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """Check a password against a stored hash in constant time."""
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed_password.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


@lru_cache(maxsize=None)
def dummy_password_hash(rounds: int = 10) -> str:
    """
    Hash checked when a login names an unknown email.

    Generated once per cost factor, so unknown emails spend as long in
    bcrypt as wrong passwords do.
    """
    return hash_password(secrets.token_urlsafe(16), rounds=rounds)


class TokenManager:
    """Issues and verifies signed session tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expire_minutes: int = 60):
        self.secret = secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes

    def create_access_token(self, user_id: int, issued_at: Optional[datetime] = None) -> str:
        """
        Create a token for a user.

        Args:
            user_id: Id of the authenticated user
            issued_at: Issue time, defaults to now (UTC)

        Returns:
            Encoded JWT with ``userId``, ``iat`` and ``exp`` claims
        """
        issued_at = issued_at or datetime.now(timezone.utc)
        payload = {
            "userId": user_id,
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=self.expire_minutes),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def decode_token(self, token: str) -> Dict:
        """
        Verify signature and expiry and return the claims.

        Raises:
            JWTError: If the token is malformed, tampered with or expired
        """
        return jwt.decode(token, self.secret, algorithms=[self.algorithm])


async def verify_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Dict:
    """
    Verify the bearer token of a request.

    Args:
        request: Incoming request; the claims are stored on ``request.state.user``
        credentials: HTTP authorization credentials, None if absent

    Returns:
        Decoded token claims

    Raises:
        HTTPException: 403 if no Authorization header was sent, 401 if the
            header is not a Bearer token or the token does not verify
    """
    if credentials is None:
        if request.headers.get("Authorization"):
            logger.warning("Unsupported authorization scheme", path=request.url.path)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        logger.warning("Request without bearer token", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="No token provided",
        )

    token_manager: TokenManager = request.app.state.token_manager
    try:
        claims = token_manager.decode_token(credentials.credentials)
    except JWTError as e:
        logger.warning("Invalid token rejected", path=request.url.path, reason=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.user = claims
    return claims


async def verify_write_access(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Dict]:
    """Gate book writes behind ``verify_token`` when ``protect_writes`` is on."""
    if not request.app.state.config.protect_writes:
        return None
    return await verify_token(request, credentials)
