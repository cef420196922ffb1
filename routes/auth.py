import logging
import re

from fastapi import APIRouter, HTTPException, Depends, status
from sqlmodel import Session, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models.models import User, UserRole, utcnow
from schemas.user_schema import UserCreate, UserLogin, UserRead, TokenRead
from core.database import get_session
from core.exceptions import StoreUnavailable
from core.security import hash_password, verify_password, create_token_for_user, get_current_user

router = APIRouter(tags=["Authentication"])
logger = logging.getLogger(__name__)


# ==========================================================
# ✅ Helper: Normalize tenant registration number
# ==========================================================
def normalize_tenant_key(value: str) -> str:
    """Strip punctuation from a CNPJ-like identifier (``12.345.678/0001-90`` -> ``12345678000190``)."""
    return re.sub(r"[^0-9A-Za-z]", "", value or "").upper()


# ==========================================================
# ✅ Signup: first account of a tenant becomes its admin
# ==========================================================
@router.post("/signup", response_model=TokenRead, status_code=status.HTTP_201_CREATED)
def signup(user_data: UserCreate, session: Session = Depends(get_session)):
    tenant_key = normalize_tenant_key(user_data.tenant_key)
    if not tenant_key:
        raise HTTPException(status_code=400, detail="A valid tenant registration number is required.")

    try:
        existing_members = session.exec(select(User.id).where(User.tenant_key == tenant_key)).first()
        role = UserRole.MEMBER if existing_members else UserRole.ADMIN

        new_user = User(
            full_name=user_data.full_name,
            email=str(user_data.email).lower(),
            password_hash=hash_password(user_data.password),
            role=role.value,
            tenant_key=tenant_key,
            is_active=True,
            created_at=utcnow(),
        )
        session.add(new_user)
        session.commit()
        session.refresh(new_user)
    except IntegrityError:
        session.rollback()
        raise HTTPException(
            status_code=400,
            detail="An account with this email already exists. Please log in instead.",
        )
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("Database error during signup: %s", e)
        raise StoreUnavailable()

    logger.info("Signup for tenant %s as %s", tenant_key, role.value)
    return TokenRead(access_token=create_token_for_user(new_user), user=UserRead.model_validate(new_user))


# ==========================================================
# ✅ Login
# ==========================================================
@router.post("/login", response_model=TokenRead)
def login(credentials: UserLogin, session: Session = Depends(get_session)):
    try:
        db_user = session.exec(select(User).where(User.email == str(credentials.email).lower())).first()
    except SQLAlchemyError as e:
        logger.error("Login database error: %s", e)
        raise StoreUnavailable()

    if not db_user or not verify_password(credentials.password, db_user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password.")

    if not db_user.is_active:
        raise HTTPException(status_code=403, detail="Your account is inactive. Contact your admin.")

    return TokenRead(access_token=create_token_for_user(db_user), user=UserRead.model_validate(db_user))


# ==========================================================
# ✅ Get Current Authenticated User
# ==========================================================
@router.get("/me", response_model=UserRead)
def get_current_user_info(current_user: User = Depends(get_current_user)):
    """Return the authenticated user's information"""
    return current_user
