"""Session tokens, password hashing and the current-user dependency."""

import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import firebase_admin
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth as firebase_auth
from firebase_admin import credentials
from firebase_admin import exceptions as firebase_exceptions
from passlib.context import CryptContext
from sqlalchemy.ext.asyncio import AsyncSession

from fixit.core.config import get_settings
from fixit.core.database import get_db
from fixit.core.errors import AuthenticationError, AuthorizationError, ExternalDependencyError, ValidationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=12)

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def is_password_hash(value: Optional[str]) -> bool:
    """True when ``value`` is recognised as an adaptive hash."""
    return bool(value) and pwd_context.identify(value) is not None


def hash_token(token: str) -> str:
    """Hash a token for storage."""
    return hashlib.sha256(token.encode()).hexdigest()


def _signing_keys() -> dict[str, str]:
    settings = get_settings()
    keys = {settings.jwt_key_id: settings.jwt_secret or ""}
    if settings.jwt_previous_secret and settings.jwt_previous_key_id:
        keys[settings.jwt_previous_key_id] = settings.jwt_previous_secret
    return keys


def create_access_token(user_id: uuid.UUID, role: str, now: Optional[datetime] = None) -> str:
    """Issue a signed session token with ``sub=user_id``."""
    settings = get_settings()
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "iat": issued,
        "exp": issued + settings.jwt_lifetime,
    }
    return jwt.encode(
        payload,
        settings.jwt_secret,
        algorithm=JWT_ALGORITHM,
        headers={"kid": settings.jwt_key_id},
    )


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify a session token against the current or previous key."""
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError:
        raise AuthenticationError("Not authorized, token invalid")

    keys = _signing_keys()
    secret = keys.get(header.get("kid") or get_settings().jwt_key_id)
    if not secret:
        raise AuthenticationError("Not authorized, unknown signing key")

    try:
        return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM], options={"require": ["sub", "exp"]})
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Not authorized, token expired")
    except jwt.PyJWTError:
        raise AuthenticationError("Not authorized, token invalid")


def _firebase_app() -> firebase_admin.App:
    if not firebase_admin._apps:
        settings = get_settings()
        options = {"projectId": settings.firebase_project_id}
        if settings.google_application_credentials:
            cred = credentials.Certificate(settings.google_application_credentials)
            firebase_admin.initialize_app(cred, options)
        else:
            firebase_admin.initialize_app(options=options)
    return firebase_admin.get_app()


def verify_federated_token(id_token: str) -> dict[str, Any]:
    """Verify a Google sign-in ID token through Firebase."""
    if not get_settings().federated_login_enabled:
        raise ValidationError("Google login is not enabled")
    try:
        return firebase_auth.verify_id_token(id_token, app=_firebase_app())
    except firebase_auth.ExpiredIdTokenError:
        raise AuthenticationError("Google token has expired")
    except (firebase_auth.InvalidIdTokenError, ValueError):
        raise AuthenticationError("Invalid Google token")
    except firebase_exceptions.FirebaseError as e:
        logger.error(f"[AUTH] Federated token verification failed: {e}")
        raise ExternalDependencyError("Google login is temporarily unavailable", retryable=True)


async def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
):
    """Resolve the bearer token to an active, non-synthetic User."""
    from fixit.models.user import User

    if creds is None or not creds.credentials:
        raise AuthenticationError("Not authorized, no token")

    payload = decode_access_token(creds.credentials)
    try:
        user_id = uuid.UUID(payload["sub"])
    except (KeyError, ValueError):
        raise AuthenticationError("Not authorized, token invalid")

    user = await db.get(User, user_id)
    if user is None or user.is_synthetic:
        raise AuthenticationError("Not authorized, user not found")
    if not user.is_active:
        raise AuthenticationError("Account is not active")
    return user


def get_actor(user) -> "Actor":
    from fixit.services.authorization import Actor

    return Actor(id=user.id, role=user.role)


def require_roles(*roles):
    """Dependency factory restricting an endpoint to global roles."""

    async def checker(current_user=Depends(get_current_user)):
        if current_user.role not in roles:
            raise AuthorizationError("Insufficient role for this operation")
        return current_user

    return checker


def token_expiry(hours: int = 1) -> datetime:
    return datetime.utcnow() + timedelta(hours=hours)
