# vendgros/security/auth.py
# 비밀번호 해싱 + JWT 로그인 토큰 + 현재 사용자 의존성 (대리접속 쿠키 반영)

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from vendgros import models
from vendgros.config import settings
from vendgros.database import get_db
from vendgros.security.impersonation import (
    ImpersonationState,
    NOT_IMPERSONATING,
    get_impersonation_state,
)

logger = logging.getLogger(__name__)

# -----------------------------------------------------
# 🔑 비밀번호 해싱
# -----------------------------------------------------
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password[:72], hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password[:72])


# -----------------------------------------------------
# 🪙 OAuth2 스키마
# -----------------------------------------------------
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    # jose 는 실제 시계로 exp 를 검증하므로 now_utc() 오버라이드와 무관하게 실제 시각 사용
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@dataclass
class AuthContext:
    """
    user: 요청을 수행하는 사용자 (대리접속 중이면 대상 사용자)
    real_user: 실제 로그인한 사용자 (대리접속 중이면 관리자)
    """
    user: models.User
    real_user: models.User
    impersonation: ImpersonationState = NOT_IMPERSONATING

    @property
    def is_impersonating(self) -> bool:
        return self.impersonation.is_impersonating


def get_auth_context(
    request: Request,
    db: Session = Depends(get_db),
    token: Optional[str] = Depends(oauth2_scheme),
) -> AuthContext:
    if not token:
        raise _credentials_error("Not authenticated (token missing)")

    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        sub = payload.get("sub")
        if sub is None:
            raise _credentials_error("Invalid token payload")
        user_id = int(sub)
    except (JWTError, ValueError):
        raise _credentials_error("Invalid token")

    user = db.get(models.User, user_id)
    if user is None:
        raise _credentials_error("User not found")
    if user.account_status == models.AccountStatus.BANNED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account banned")

    ctx = AuthContext(user=user, real_user=user)

    # 대리접속 쿠키는 관리자 본인 토큰과 함께 올 때만 인정
    if user.is_admin:
        state = get_impersonation_state(request.cookies)
        if state.is_impersonating and state.original_admin and state.original_admin.id == user.id:
            target = db.get(models.User, state.impersonated_user.id)
            if target is not None:
                ctx = AuthContext(user=target, real_user=user, impersonation=state)
            else:
                logger.warning("impersonated user %s no longer exists", state.impersonated_user.id)

    request.state.auth = ctx
    return ctx


def get_current_user(ctx: AuthContext = Depends(get_auth_context)) -> models.User:
    return ctx.user
