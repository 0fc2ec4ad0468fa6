"""
Bearer-token authentication and role checks.

Tokens are HS256 JWTs carrying the caller's ``id`` and ``role``. The role in
the token is only a hint: every request re-reads the user, so a deleted or
re-roled account loses access immediately.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from registrar import config, repository
from registrar.app_logger import get_logger
from registrar.database import Store, get_store
from registrar.errors import AuthenticationError, AuthorizationError
from registrar.schemas import User

logger = get_logger("auth")

bearer = HTTPBearer(auto_error=False)

# body fields that name the user a request acts for
SUBJECT_FIELDS = ("userId", "studentId", "id", "targetUserId")


def create_access_token(user_id: str, role: str, expires_minutes: int = 60) -> str:
    claims = {
        "id": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(claims, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        claims = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError("Invalid token") from exc
    if not claims.get("id"):
        raise AuthenticationError("Invalid token")
    return claims


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Security(bearer),
    store: Store = Depends(get_store),
) -> User:
    if creds is None or not creds.credentials:
        raise AuthenticationError("No token, authorization denied")
    claims = decode_token(creds.credentials)
    with store.unit_of_work() as uow:
        user = repository.get_user(uow, claims["id"])
    if user is None:
        logger.info("Token for unknown user %s rejected", claims["id"])
        raise AuthenticationError("User not found")
    return user


def require_role(*roles: str):
    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise AuthorizationError("Access denied")
        return user
    return dependency


async def _body_subjects(request: Request) -> list:
    raw = await request.body()
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except ValueError:
        # malformed bodies are reported by request validation
        return []
    if not isinstance(payload, dict):
        return []
    return [payload[f] for f in SUBJECT_FIELDS if payload.get(f)]


async def current_student(
    user_id: str,
    request: Request,
    user: User = Depends(require_role("student")),
) -> User:
    """The calling student, who may only act on their own record."""
    claimed = [user_id] + await _body_subjects(request)
    if any(c != user.id for c in claimed):
        logger.warning("Student %s attempted to act for %s", user.id, claimed)
        raise AuthorizationError("Unauthorized access")
    return user
