import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson import ObjectId
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext

from database import get_db, create_document
from errors import AuthenticationError, AuthorizationError
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    if not hashed:
        return False
    return password_ctx.verify(password, hashed)


def create_token(user: dict, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "is_admin": user.get("is_admin", False),
        "exp": now + timedelta(minutes=settings.jwt_expires_min),
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def public_user(user: dict) -> dict:
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "is_admin": user.get("is_admin", False),
        "cart": user.get("cart", []),
    }


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db=Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> dict:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    payload = decode_token(credentials.credentials, settings)
    uid = payload.get("sub")
    if not uid or not ObjectId.is_valid(uid):
        raise AuthenticationError("Invalid token")
    user = db["user"].find_one({"_id": ObjectId(uid)})
    if not user or not user.get("is_active", True):
        raise AuthenticationError("User not found")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_admin"):
        raise AuthorizationError("Access denied. Admin only.")
    return user


def ensure_admin(db, settings: Settings) -> Optional[str]:
    """Create the bootstrap admin account, or promote an existing user with that email."""
    if not settings.admin_email or not settings.admin_password:
        return None
    email = settings.admin_email.lower()
    existing = db["user"].find_one({"email": email})
    if existing:
        if not existing.get("is_admin"):
            db["user"].update_one({"_id": existing["_id"]}, {"$set": {"is_admin": True}})
            logger.info("Promoted existing user %s to admin", email)
        return str(existing["_id"])
    uid = create_document(db, "user", {
        "name": settings.admin_name,
        "email": email,
        "hashed_password": hash_password(settings.admin_password),
        "is_active": True,
        "is_admin": True,
        "cart": [],
    })
    logger.info("Created admin user %s", email)
    return uid
