# core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlmodel import Session, select

from core.database import get_session
from core.config import settings
from core.exceptions import AuthenticationError, AuthorizationError, TenantNotLinked
from models.models import User


# ========================================
# 🔑 JWT / APP CONFIG
# ========================================
SECRET_KEY = settings.SECRET_KEY
ALGORITHM = settings.ALGORITHM or "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = settings.ACCESS_TOKEN_EXPIRE_MINUTES

# auto_error=False so a missing header surfaces as AuthenticationError
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


# ========================================
# 🔐 Password Hashing (Argon2)
# ========================================
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash password using Argon2."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password using Argon2."""
    return pwd_context.verify(plain_password, hashed_password)


# ========================================
# 🔑 Token Helpers
# ========================================
def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode JWT and return payload."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token.")


def create_token_for_user(user: User) -> str:
    return create_access_token(
        {
            "sub": user.email,
            "user_id": user.id,
            "tenant_key": user.tenant_key,
            "role": user.role,
        }
    )


# ========================================
# 👤 Authentication & Role Checks
# ========================================
def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> User:
    """Extract user from token and load full record from DB."""
    if not token:
        raise AuthenticationError()

    payload = decode_token(token)
    user_id = payload.get("user_id")
    email = payload.get("sub")

    if not (user_id or email):
        raise AuthenticationError("Invalid token payload")

    user = None
    if user_id:
        user = session.get(User, user_id)
    if not user and email:
        user = session.exec(select(User).where(User.email == email)).first()

    if not user:
        raise AuthenticationError("User not found")
    if not user.is_active:
        raise AuthorizationError("Account is inactive")

    return user


def get_current_admin(current_user: User = Depends(get_current_user)) -> User:
    """Require the administrator of the caller's tenant."""
    if not current_user.is_tenant_admin():
        if not current_user.tenant_key:
            raise TenantNotLinked()
        raise AuthorizationError()
    return current_user
