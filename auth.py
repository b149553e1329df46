"""
Identity: JWT tokens, password hashing and the owner-role rule.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

import database
from config import Settings, get_settings
from exceptions import AuthenticationError, ForbiddenError

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# ---------------------- Passwords ----------------------
def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash or over-long password
        return False


# ---------------------- Tokens ----------------------
def create_jwt(payload: Dict[str, Any], settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=settings.token_expire_min)
    to_encode = {"exp": exp, "iat": now, **payload}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_jwt(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except JWTError as e:
        raise AuthenticationError(f"Invalid token: {e}") from e


def issue_token(user: Dict[str, Any], settings: Settings) -> str:
    return create_jwt({
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "name": user.get("name"),
        "role": user.get("role", "customer"),
    }, settings)


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "customer"),
    }


# ---------------------- Owner role ----------------------
def is_owner_email(email: Optional[str], settings: Settings) -> bool:
    if not email or not settings.owner_email:
        return False
    return email.strip().lower() == settings.owner_email.strip().lower()


def role_for_new_user(email: str, settings: Settings) -> str:
    return "admin" if is_owner_email(email, settings) else "customer"


def apply_owner_role(user: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    """Make sure the owner account carries the admin role.

    Writes only when the stored role differs, so repeated calls are no-ops.
    """
    if not is_owner_email(user.get("email"), settings) or user.get("role") == "admin":
        return user
    logger.info("Promoting owner account %s to admin", user.get("email"))
    updated = database.update_document("user", user["_id"], {"role": "admin"})
    return updated if updated is not None else {**user, "role": "admin"}


# ---------------------- Dependencies ----------------------
def get_token_claims(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    if not creds:
        raise AuthenticationError("Authorization required")
    return decode_jwt(creds.credentials, settings)


def load_user(claims: Dict[str, Any], settings: Settings) -> Dict[str, Any]:
    """Resolve token claims to the stored user record."""
    _id = database.to_object_id(claims.get("sub") or "")
    user = database.get_document("user", {"_id": _id}) if _id is not None else None
    if not user or not user.get("is_active", True):
        raise AuthenticationError("User not found")
    return apply_owner_role(user, settings)


def get_current_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    return load_user(claims, settings)


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise ForbiddenError("Admin access required")
    return user
