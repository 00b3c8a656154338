# vendgros/config/settings.py
# 환경변수 기반 설정. 값이 없으면 개발용 기본값 사용.

import os

from vendgros.errors import ImpersonationConfigError


def _env_bool(key: str, default: bool) -> bool:
    v = os.getenv(key)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT == "production"

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./vendgros.db")

# JWT (로그인 토큰)
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# 채팅 메시지 암호화 마스터키
MESSAGE_ENCRYPTION_KEY = os.getenv("MESSAGE_ENCRYPTION_KEY", "dev-key-change-in-production-32c")

# cron / 결제 웹훅 공유 시크릿 (없으면 해당 엔드포인트는 500)
CRON_SECRET = os.getenv("CRON_SECRET")
PAYMENT_WEBHOOK_SECRET = os.getenv("PAYMENT_WEBHOOK_SECRET")

# 예약 자동 만료 워커 (테스트에서는 꺼둔다)
AUTO_EXPIRE_WORKER = _env_bool("AUTO_EXPIRE_WORKER", True)

DEV_DEBUG_ERRORS = _env_bool("DEV_DEBUG_ERRORS", False)


def impersonation_secret() -> str:
    """
    IMPERSONATION_SECRET 우선, 없으면 AUTH_SECRET.
    요청 시점에 읽는다 (테스트에서 monkeypatch.setenv 로 바꿀 수 있게).
    """
    secret = os.getenv("IMPERSONATION_SECRET") or os.getenv("AUTH_SECRET")
    if not secret:
        raise ImpersonationConfigError("IMPERSONATION_SECRET or AUTH_SECRET must be set")
    return secret
