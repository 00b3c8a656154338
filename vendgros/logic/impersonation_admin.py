# vendgros/logic/impersonation_admin.py
# 관리자 대리접속 시작/종료 + 감사 로그 조회

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from vendgros import crud
from vendgros.core.time_policy import now_utc
from vendgros.errors import ConflictError, ForbiddenError, ImpersonationConfigError
from vendgros.models import AccountStatus, EventType, ImpersonationLog, User
from vendgros.security.impersonation import (
    CookieSpec,
    ImpersonationState,
    clear_impersonation_cookie,
    create_impersonation_cookie,
)

logger = logging.getLogger(__name__)


def require_admin(db: Session, *, real_user_id: int) -> User:
    """
    관리자 권한 확인. 대리접속 중이어도 원래 관리자(real_user) 기준으로 본다.
    """
    return crud.require_admin(db, real_user_id)


def start_impersonation(
    db: Session,
    *,
    real_user_id: int,
    state: ImpersonationState,
    target_user_id: int,
    reason: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Dict[str, Any]:
    admin = require_admin(db, real_user_id=real_user_id)

    if state.is_impersonating:
        raise ConflictError(
            "Cannot start new impersonation while already impersonating. "
            "Please exit current impersonation first."
        )

    target = crud.get_user(db, target_user_id)
    if target.is_admin:
        raise ForbiddenError("Cannot impersonate admin users")
    if target.account_status == AccountStatus.BANNED:
        raise ForbiddenError("Cannot impersonate banned users")
    if target.account_status == AccountStatus.SUSPENDED:
        raise ForbiddenError("Cannot impersonate suspended users")

    log = ImpersonationLog(
        admin_id=admin.id,
        impersonated_user_id=target.id,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        started_at=now_utc(),
    )
    db.add(log)
    db.flush()

    # 시크릿 미설정이면 여기서 ImpersonationConfigError → 로그 행도 같이 롤백
    try:
        cookie = create_impersonation_cookie(
            admin_id=admin.id,
            admin_email=admin.email,
            admin_name=admin.name,
            impersonated_user_id=target.id,
            impersonated_user_email=target.email,
            impersonated_user_name=target.name,
            log_id=log.id,
        )
    except ImpersonationConfigError:
        db.rollback()
        raise

    crud._log_event(
        db,
        event_type=EventType.IMPERSONATION_STARTED,
        actor_type="admin",
        actor_id=admin.id,
        reason=reason,
        meta={"impersonated_user_id": target.id, "log_id": log.id},
    )
    db.commit()

    logger.info("admin %s started impersonating user %s (log=%s)", admin.id, target.id, log.id)
    return {
        "success": True,
        "log_id": log.id,
        "cookie": cookie,
        "impersonated_user": {"id": target.id, "email": target.email, "name": target.name},
    }


def stop_impersonation(db: Session, *, state: ImpersonationState) -> Dict[str, Any]:
    if not state.is_impersonating or not state.log_id:
        raise ConflictError("Not currently impersonating")

    log = db.get(ImpersonationLog, state.log_id)
    if log is not None and log.ended_at is None:
        log.ended_at = now_utc()
        db.add(log)

    crud._log_event(
        db,
        event_type=EventType.IMPERSONATION_ENDED,
        actor_type="admin",
        actor_id=state.original_admin.id if state.original_admin else None,
        meta={"log_id": state.log_id},
    )
    db.commit()

    logger.info("impersonation ended (log=%s)", state.log_id)
    cookie: CookieSpec = clear_impersonation_cookie()
    return {"success": True, "cookie": cookie}


def list_impersonation_logs(
    db: Session,
    *,
    real_user_id: int,
    admin_id: Optional[int] = None,
    impersonated_user_id: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
) -> Dict[str, Any]:
    require_admin(db, real_user_id=real_user_id)

    q = db.query(ImpersonationLog)
    if admin_id is not None:
        q = q.filter(ImpersonationLog.admin_id == admin_id)
    if impersonated_user_id is not None:
        q = q.filter(ImpersonationLog.impersonated_user_id == impersonated_user_id)

    total = q.count()
    logs = (
        q.order_by(ImpersonationLog.started_at.desc(), ImpersonationLog.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return {"logs": logs, "total": total, "has_more": offset + limit < total}
