"""Password hashing and the bearer tokens issued by ``/auth/login``."""
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from callsync.core.config import settings

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"

pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return pwd_context.verify(password, hashed)


def create_access_token(account_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.access_token_expire_minutes
    )
    claims = {"sub": str(account_id), "role": role, "type": ACCESS_TOKEN_TYPE, "exp": expire}
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> int:
    """Account id from a valid access token; raises ``JWTError`` otherwise."""
    claims = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError("Not an access token")
    try:
        return int(claims["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise JWTError("Malformed subject") from exc
