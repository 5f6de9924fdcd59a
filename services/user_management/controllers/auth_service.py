# services/user_management/controllers/auth_service.py

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from services.user_management.models.users import AdminAccount, StudentAccount
from services.user_management.schemas.users import (
    LimiterResetRequest,
    LimiterResetResponse,
    LoginRequest,
    LoginResponse,
)
from shared.auth import (
    ROLE_ADMIN,
    ROLE_STUDENT,
    LoginRateLimiter,
    create_access_token,
    get_current_admin,
    get_login_limiter,
    verify_password,
)
from shared.db import get_db
from shared.logging_config import security_logger

router = APIRouter(prefix="/auth", tags=["Auth"])


async def authenticate(db: AsyncSession, model, role: str, payload: LoginRequest, limiter: LoginRateLimiter) -> LoginResponse:
    email = payload.email.lower()
    if limiter.is_blocked(email):
        security_logger.log_login_blocked(email)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed login attempts. Try again later."
        )

    result = await db.execute(select(model).where(func.lower(model.email) == email))
    user = result.scalars().first()

    if not user or not verify_password(payload.password, user.hashed_password):
        limiter.record_failure(email)
        security_logger.log_login(email, role, success=False)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials"
        )

    if getattr(user, "is_active", True) is False:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled"
        )

    limiter.record_success(email)
    security_logger.log_login(email, role, success=True)

    token_data = {
        "sub": user.email,
        "role": role,
        "user_id": user.id,
    }
    return LoginResponse(
        id=user.id,
        name=user.name,
        role=role,
        access_token=create_access_token(token_data),
    )


# --- STUDENT LOGIN ---
@router.post("/student/login", response_model=LoginResponse)
async def student_login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    limiter: LoginRateLimiter = Depends(get_login_limiter)
):
    return await authenticate(db, StudentAccount, ROLE_STUDENT, payload, limiter)


# --- ADMIN LOGIN ---
@router.post("/admin/login", response_model=LoginResponse)
async def admin_login(
    payload: LoginRequest,
    db: AsyncSession = Depends(get_db),
    limiter: LoginRateLimiter = Depends(get_login_limiter)
):
    return await authenticate(db, AdminAccount, ROLE_ADMIN, payload, limiter)


# --- ADMIN: CLEAR LOGIN LIMITER ---
@router.post("/admin/login-limiter/reset", response_model=LimiterResetResponse)
async def reset_login_limiter(
    payload: LimiterResetRequest,
    limiter: LoginRateLimiter = Depends(get_login_limiter),
    current_user: dict = Depends(get_current_admin)
):
    key = payload.email.lower() if payload.email else None
    limiter.reset(key)
    security_logger.log_admin_action(current_user["user_id"], "RESET_LOGIN_LIMITER", key or "all")
    return LimiterResetResponse(cleared=key or "all")
