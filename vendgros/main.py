# vendgros/main.py
from __future__ import annotations

import asyncio
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from vendgros import crud, database
from vendgros.config import settings
from vendgros.core.time_policy import now_utc, set_now_utc_for_testing
from vendgros.database import Base, engine
from vendgros.policy.runtime import get_policy
from vendgros.routers import admin, auth, chat, cron, listings, payments, ratings, reservations

logger = logging.getLogger(__name__)


# --------------------------------------------------
# 예약 자동 만료 워커
# --------------------------------------------------
def _sweep_once() -> int:
    db = database.SessionLocal()
    try:
        return crud.expire_reservations(db).cancelled
    finally:
        db.close()


def _seconds_until_next_expiry() -> Optional[float]:
    db = database.SessionLocal()
    try:
        next_expires_at = crud.next_pending_expiry(db)
    finally:
        db.close()
    if next_expires_at is None:
        return None
    return max(0.0, (next_expires_at - now_utc()).total_seconds())


async def auto_expire_worker() -> None:
    """
    - '다음으로 만료될 PENDING 예약'의 expires_at 까지 기다렸다가 expire_reservations() 실행
    - 대기 중인 예약이 없으면 worker_idle_seconds 마다 다시 확인
    - 대기 중에 새 예약이 들어와도 idle 간격 이상은 자지 않는다
    """
    idle = get_policy().reservation.worker_idle_seconds

    while True:
        try:
            delay = _seconds_until_next_expiry()
            if delay is None:
                await asyncio.sleep(idle)
                continue

            # 경계값(expires_at == now)은 다음 루프에서 잡히도록 약간 여유
            await asyncio.sleep(min(delay + 0.05, idle))

            cancelled = _sweep_once()
            if cancelled:
                logger.info("[AUTO_EXPIRE] cancelled=%s", cancelled)

        except asyncio.CancelledError:
            raise
        except Exception:
            # 워커가 멈추지 않도록
            logger.exception("[AUTO_EXPIRE] error")
            await asyncio.sleep(30)


# Lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    set_now_utc_for_testing(None)

    # DB 테이블 생성은 import 시점이 아니라 startup 시점에서
    Base.metadata.create_all(bind=engine)

    worker: Optional[asyncio.Task] = None
    if settings.AUTO_EXPIRE_WORKER:
        worker = asyncio.create_task(auto_expire_worker())
        logger.info("auto-expire worker started")

    yield

    if worker is not None:
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Vendgros API", version="1.0", lifespan=lifespan)


# 예외 핸들러
@app.exception_handler(StarletteHTTPException)
async def http_exc_handler(request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_exc_handler(request, exc: Exception):
    logger.error("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    if settings.DEV_DEBUG_ERRORS:
        tb_tail = traceback.format_exception(type(exc), exc, exc.__traceback__)[-1].strip()
        return JSONResponse(
            status_code=500,
            content={
                "detail": {
                    "error": exc.__class__.__name__,
                    "msg": str(exc),
                    "where": f"{request.method} {request.url.path}",
                    "trace_tail": tb_tail,
                }
            },
        )
    return JSONResponse(status_code=500, content={"detail": "Internal error"})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(auth.router)
app.include_router(listings.router)
app.include_router(reservations.router)
app.include_router(payments.router)
app.include_router(chat.router)
app.include_router(ratings.router)
app.include_router(admin.router)
app.include_router(cron.router)


@app.get("/health")
def health():
    return {"ok": True, "time": now_utc().isoformat()}
