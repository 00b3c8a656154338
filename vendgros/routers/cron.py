# vendgros/routers/cron.py
# 외부 스케줄러가 호출하는 만료 예약 정리 엔드포인트

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from vendgros import crud
from vendgros.config import settings
from vendgros.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])


def _authorized(authorization: Optional[str], secret: str) -> bool:
    expected = f"Bearer {secret}"
    return bool(authorization) and hmac.compare_digest(
        authorization.encode("utf-8"), expected.encode("utf-8")
    )


@router.post("/cancel-expired-reservations")
def cron_cancel_expired_reservations(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
):
    secret = settings.CRON_SECRET
    if not secret:
        logger.error("CRON_SECRET environment variable is not set")
        return JSONResponse(status_code=500, content={"error": "Server configuration error"})

    if not _authorized(authorization, secret):
        logger.warning("Unauthorized cron request")
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    result = crud.expire_reservations(db)

    if not result.details:
        return {"success": True, "cancelled": 0, "message": "No expired reservations found"}

    return {
        "success": True,
        "cancelled": result.cancelled,
        "failed": result.failed,
        "skipped": result.skipped,
        "message": f"Cancelled {result.cancelled} expired reservations",
        "details": result.details,
    }


@router.get("/cancel-expired-reservations")
def cron_cancel_expired_reservations_health():
    return {
        "endpoint": "cancel-expired-reservations",
        "status": "ready",
        "message": "Use POST with authorization header to trigger cancellation",
    }
