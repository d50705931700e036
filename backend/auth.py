from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError

from config import settings
from errors import Unauthorized

# --- Configuration ---
AUTH_COOKIE = "session"
ALGORITHM = "HS256"

# --- Password Hashing ---
# Argon2 for new hashes; bcrypt hashes from older accounts still verify
pwd_context = CryptContext(schemes=["argon2", "bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError) as e:
        # Unknown or corrupt hash format counts as a failed check
        print(f"Error verifying password: {e}")
        return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


# --- Session payload ---
class SessionUser(BaseModel):
    userId: int
    username: str
    email: str
    firstName: str = ""
    lastName: str = ""


def _secret() -> str:
    if not settings.AUTH_SECRET:
        raise RuntimeError("Missing AUTH_SECRET")
    return settings.AUTH_SECRET


def encode_session(user: SessionUser, days: int) -> str:
    now = datetime.now(timezone.utc)
    payload = user.model_dump()
    payload.update({"sub": str(user.userId), "iat": now, "exp": now + timedelta(days=days)})
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM)


def decode_session(token: str) -> Optional[SessionUser]:
    """Verify signature and expiry. Any failure means "no session"."""
    try:
        payload = jwt.decode(token, _secret(), algorithms=[ALGORITHM])
        return SessionUser.model_validate(payload, strict=True)
    except (JWTError, ValidationError):
        return None
    except RuntimeError as e:
        print(f"Session check skipped: {e}")
        return None


# --- Cookie handling ---
def create_session(response: Response, user: SessionUser, days: Optional[int] = None) -> None:
    days = days or settings.SESSION_DAYS
    response.set_cookie(
        AUTH_COOKIE,
        encode_session(user, days),
        max_age=60 * 60 * 24 * days,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.is_production,
    )


def get_session_user(request: Request) -> Optional[SessionUser]:
    token = request.cookies.get(AUTH_COOKIE)
    if not token:
        return None
    return decode_session(token)


def clear_session(response: Response) -> None:
    response.delete_cookie(AUTH_COOKIE, path="/")


# --- Dependencies ---
def optional_user(request: Request) -> Optional[SessionUser]:
    return get_session_user(request)


def require_user(user: Optional[SessionUser] = Depends(optional_user)) -> SessionUser:
    if user is None:
        raise Unauthorized("Unauthorized")
    return user
