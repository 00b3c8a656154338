# vendgros/security/impersonation.py
"""
관리자 대리접속(impersonation) 토큰.

토큰 형식: ``base64url(json(payload)) + "." + base64url(HMAC-SHA256(secret, payload_b64))``
(패딩 없음). HTTP-only 쿠키에 담아서 주고받는다.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Mapping, Optional

from vendgros.config import settings
from vendgros.core.time_policy import now_utc, to_epoch_seconds
from vendgros.policy.runtime import get_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImpersonationPayload:
    admin_id: int
    admin_email: str
    admin_name: str
    impersonated_user_id: int
    impersonated_user_email: str
    impersonated_user_name: str
    log_id: int  # impersonation_logs.id
    iat: int = 0
    exp: int = 0


@dataclass(frozen=True)
class UserRef:
    id: int
    email: str
    name: str


@dataclass(frozen=True)
class ImpersonationState:
    is_impersonating: bool = False
    original_admin: Optional[UserRef] = None
    impersonated_user: Optional[UserRef] = None
    log_id: Optional[int] = None


@dataclass(frozen=True)
class CookieSpec:
    name: str
    value: str
    http_only: bool
    secure: bool
    same_site: str
    path: str
    max_age: int

    def as_set_cookie_kwargs(self) -> Dict[str, Any]:
        """starlette Response.set_cookie() 인자 형태."""
        return {
            "key": self.name,
            "value": self.value,
            "httponly": self.http_only,
            "secure": self.secure,
            "samesite": self.same_site,
            "path": self.path,
            "max_age": self.max_age,
        }


NOT_IMPERSONATING = ImpersonationState()


def cookie_name() -> str:
    return get_policy().impersonation.cookie_name


# -----------------------------------------------------
# base64url (패딩 없음)
# -----------------------------------------------------
def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(s: str) -> bytes:
    pad = "=" * (-len(s) % 4)
    return base64.urlsafe_b64decode(s + pad)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        settings.impersonation_secret().encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


# -----------------------------------------------------
# 토큰 생성 / 검증
# -----------------------------------------------------
def create_token(
    *,
    admin_id: int,
    admin_email: str,
    admin_name: str,
    impersonated_user_id: int,
    impersonated_user_email: str,
    impersonated_user_name: str,
    log_id: int,
) -> str:
    iat = to_epoch_seconds(now_utc())
    payload = ImpersonationPayload(
        admin_id=admin_id,
        admin_email=admin_email,
        admin_name=admin_name,
        impersonated_user_id=impersonated_user_id,
        impersonated_user_email=impersonated_user_email,
        impersonated_user_name=impersonated_user_name,
        log_id=log_id,
        iat=iat,
        exp=iat + get_policy().impersonation.token_expiry_seconds,
    )
    payload_b64 = _b64url_encode(json.dumps(asdict(payload), separators=(",", ":")).encode("utf-8"))
    return f"{payload_b64}.{_sign(payload_b64)}"


def verify_token(token: str) -> Optional[ImpersonationPayload]:
    """
    서명/만료 검증 후 payload 반환. 실패 시 None.
    시크릿 미설정(ImpersonationConfigError)은 그대로 올린다.
    """
    if not token or not token.isascii() or token.count(".") != 1:
        return None
    payload_b64, signature = token.split(".")
    if not payload_b64 or not signature:
        return None

    if not hmac.compare_digest(signature.encode("ascii"), _sign(payload_b64).encode("ascii")):
        logger.warning("Impersonation token signature mismatch")
        return None

    try:
        data = json.loads(_b64url_decode(payload_b64).decode("utf-8"))
        payload = ImpersonationPayload(**data)
    except (binascii.Error, ValueError, TypeError) as e:
        logger.warning("Failed to decode impersonation token: %s", e)
        return None

    if payload.exp < to_epoch_seconds(now_utc()):
        logger.warning("Impersonation token expired (log_id=%s)", payload.log_id)
        return None

    return payload


# -----------------------------------------------------
# 쿠키 → 상태
# -----------------------------------------------------
def get_impersonation_state(cookies: Mapping[str, str]) -> ImpersonationState:
    token = cookies.get(cookie_name())
    if not token:
        return NOT_IMPERSONATING

    payload = verify_token(token)
    if payload is None:
        return NOT_IMPERSONATING

    return ImpersonationState(
        is_impersonating=True,
        original_admin=UserRef(payload.admin_id, payload.admin_email, payload.admin_name),
        impersonated_user=UserRef(
            payload.impersonated_user_id,
            payload.impersonated_user_email,
            payload.impersonated_user_name,
        ),
        log_id=payload.log_id,
    )


def create_impersonation_cookie(**params: Any) -> CookieSpec:
    token = create_token(**params)
    return CookieSpec(
        name=cookie_name(),
        value=token,
        http_only=True,
        secure=settings.IS_PRODUCTION,
        same_site="lax",
        path="/",
        max_age=get_policy().impersonation.token_expiry_seconds,
    )


def clear_impersonation_cookie() -> CookieSpec:
    return CookieSpec(
        name=cookie_name(),
        value="",
        http_only=True,
        secure=settings.IS_PRODUCTION,
        same_site="lax",
        path="/",
        max_age=0,
    )
