"""
Authentication and the single authorization gate.

Tokens are opaque random strings stored in the ``session`` collection. Every
protected handler declares the capability it needs with ``Depends(require(...))``;
the role -> capability table below is the only place access policy lives.
"""

import secrets
from datetime import timedelta
from typing import Dict, FrozenSet, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from config import settings
from database import as_utc, get_db, now_utc, to_object_id
from errors import Forbidden, Unauthorized, ValidationFailed

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)

_USER = frozenset({"checkout", "cart", "review:create", "order:read_own", "payment:read_own"})
_STAFF = _USER | {"order:list", "order:read_any", "order:update_status", "product:write", "payment:list"}
_ADMIN = _STAFF | {"order:delete", "product:delete", "coupon:manage", "user:manage"}

ROLE_CAPABILITIES: Dict[str, FrozenSet[str]] = {
    "user": _USER,
    "staff": _STAFF,
    "admin": _ADMIN,
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def change_password(user: dict, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.get("password_hash", "")):
        raise ValidationFailed("Current password is incorrect.")
    get_db()["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"password_hash": hash_password(new_password), "updated_at": now_utc()}},
    )


def can(user: dict, capability: str) -> bool:
    return capability in ROLE_CAPABILITIES.get(user.get("role", "user"), frozenset())


def create_token(user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    get_db()["session"].insert_one({
        "token": token,
        "user_id": user_id,
        "created_at": now_utc(),
        "expires_at": now_utc() + timedelta(hours=settings.token_ttl_hours),
    })
    return token


def revoke_token(token: str) -> None:
    get_db()["session"].delete_one({"token": token})


def user_for_token(token: str) -> Optional[dict]:
    database = get_db()
    session = database["session"].find_one({"token": token})
    if not session or as_utc(session["expires_at"]) <= now_utc():
        return None
    user = database["user"].find_one({"_id": to_object_id(session["user_id"], "User")})
    if not user or not user.get("is_active", True):
        return None
    return user


def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> dict:
    if credentials is None:
        raise Unauthorized("Unauthorized")
    user = user_for_token(credentials.credentials)
    if user is None:
        raise Unauthorized("Unauthorized")
    return user


def require(capability: str):
    def dependency(user: dict = Depends(current_user)) -> dict:
        if not can(user, capability):
            raise Forbidden("Forbidden")
        return user

    return dependency


def ensure_owner_or(user: dict, owner_id: Optional[str], capability: str) -> None:
    if owner_id is not None and str(user["_id"]) == str(owner_id):
        return
    if not can(user, capability):
        raise Forbidden("Forbidden")
