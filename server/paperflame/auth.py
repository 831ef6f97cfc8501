"""
Password hashing, access tokens and the current-user dependency.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from werkzeug.security import check_password_hash, generate_password_hash

from paperflame.config import Settings, get_settings
from paperflame.db import DbClient, UserRecord
from paperflame.dependencies import get_db_client

logger = logging.getLogger(__name__)

PASSWORD_HASH_METHOD = "scrypt"

# Only used when the in-memory backends are on; real deployments must set
# JWT_SECRET_KEY.
DEV_SECRET_KEY = "paperflame-in-memory-dev-key"

oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{get_settings().api_prefix}/auth/login"
)


class MissingSecretKeyError(RuntimeError):
    """JWT_SECRET_KEY is unset outside of in-memory development mode."""


def hash_password(password: str, *, method: str = PASSWORD_HASH_METHOD) -> str:
    return generate_password_hash(password, method=method)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return check_password_hash(password_hash, password)
    except ValueError:
        # Unknown hash method.
        return False


def _signing_key(settings: Settings) -> str:
    if settings.jwt_secret_key:
        return settings.jwt_secret_key
    if settings.use_in_memory_backends:
        return DEV_SECRET_KEY
    raise MissingSecretKeyError("JWT_SECRET_KEY must be set to issue or check tokens")


def create_access_token(user_id: str, settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.access_token_expire_minutes
    )
    to_encode = {"sub": user_id, "exp": expire}
    return jwt.encode(to_encode, _signing_key(settings), algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings | None = None) -> str:
    """
    Return the user id carried by ``token``.

    Raises jwt.ExpiredSignatureError for expired tokens and
    jwt.InvalidTokenError for anything else that fails validation.
    """
    settings = settings or get_settings()
    payload = jwt.decode(
        token, _signing_key(settings), algorithms=[settings.jwt_algorithm]
    )
    user_id = payload.get("sub")
    if not user_id:
        raise jwt.InvalidTokenError("Token has no subject")
    return user_id


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
) -> UserRecord:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        user_id = decode_access_token(token, settings)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError:
        raise credentials_exception

    user = db.get_user(user_id)
    if user is None:
        logger.info("Token for unknown user %s rejected", user_id)
        raise credentials_exception
    return user
