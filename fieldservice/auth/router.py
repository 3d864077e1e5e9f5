from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..schemas.auth import LoginRequest, MeResponse, RefreshRequest, TokenResponse
from .security import (
    create_access_token,
    create_refresh_token,
    decode_token,
    get_current_user,
    verify_password,
)


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == req.email.lower()).first()
    if not user or not verify_password(req.password, user.password_hash):
        logger.info("login_failed", email=req.email.lower())
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.disabled:
        raise HTTPException(status_code=403, detail="Account disabled")
    access = create_access_token(str(user.id), role=user.role)
    refresh = create_refresh_token(str(user.id))
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    logger.info("login_succeeded", user_id=user.id, role=user.role)
    return TokenResponse(access_token=access, refresh_token=refresh)


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    payload = decode_token(req.refresh_token)
    if payload.get("type") != "refresh":
        raise HTTPException(status_code=400, detail="Invalid refresh token")
    user = db.query(User).filter(User.id == str(payload.get("sub"))).first()
    if user is None or user.disabled:
        raise HTTPException(status_code=401, detail="User not active")
    # Role is re-read so a role change takes effect on the next refresh
    access = create_access_token(str(user.id), role=user.role)
    return TokenResponse(access_token=access, refresh_token=create_refresh_token(str(user.id)))


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(
        id=str(user.id),
        name=user.name,
        email=user.email,
        role=user.role,
        internal_pay_rate=user.internal_pay_rate,
        chargeout_rate=user.chargeout_rate,
    )
