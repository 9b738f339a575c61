"""
Bearer-token authentication for API callers.

Tokens are issued out of band (``scripts/seed_roles.py``, tests); there is
no login endpoint. Permission denials are logged with the caller and the
permissions the route asked for.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User
from ..services.permissions import has_permission

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id, roles: Optional[List[str]] = None, ttl_seconds: Optional[int] = None) -> str:
    """Signed token for ``user_id`` valid for JWT_TTL seconds unless overridden."""
    issued = datetime.now(tz=timezone.utc)
    payload = {
        "sub": str(user_id),
        "roles": roles or [],
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(seconds=ttl_seconds or settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid token")


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
) -> User:
    if creds is None:
        raise _unauthorized("Not authenticated")
    payload = decode_token(creds.credentials)
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid subject")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise _unauthorized("User not active")
    return user


def require_permissions(*required_permissions: str):
    """
    Route dependency: the caller needs at least one of the permissions.
    Admin and super_admin roles pass every check.
    """
    def _dep(user: User = Depends(get_current_user)):
        if not any(has_permission(user, perm) for perm in required_permissions):
            logger.info("permission_denied", user_id=str(user.id), required=list(required_permissions))
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return user

    return _dep
