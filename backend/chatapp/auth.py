import logging
import time

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from .config import settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)
security = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def token_lifetime_seconds() -> int:
    return 60 * settings.access_token_expire_minutes


def create_access_token(sub: str, email: str | None = None, expires_minutes: int | None = None) -> str:
    now = int(time.time())
    payload = {
        "sub": sub,
        "iat": now,
        "exp": now + 60 * (expires_minutes or settings.access_token_expire_minutes),
    }
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


def user_id_from_token(token: str) -> int:
    data = decode_token(token)
    try:
        return int(data["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")


def extract_bearer(value: str | None) -> str | None:
    """Return the token part of an ``Authorization: Bearer <token>`` value."""
    if not value:
        return None
    scheme, _, token = value.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def resolve_socket_token(auth: dict | None, headers, query) -> str | None:
    # handshake auth payload, then Authorization header, then ?token=
    if auth and auth.get("token"):
        return auth["token"]
    header_token = extract_bearer(headers.get("authorization"))
    if header_token:
        return header_token
    return query.get("token") or None


async def get_current_user_id(creds: HTTPAuthorizationCredentials | None = Depends(security)) -> int:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user_id_from_token(creds.credentials)
