# ===== Vendgros Schemas (Users / Listings / Reservations / Payments / Chat / Ratings / Admin) =====
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# 모델 Enum 재사용
from vendgros.models import (
    AccountStatus,
    EventType,
    ListingStatus,
    RatingType,
    ReservationStatus,
)


# ─────────────────────────────────────────────────────────
# 공통 ORM 베이스
# ─────────────────────────────────────────────────────────
class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# ---------------- User ----------------
class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=100)
    password: str = Field(..., min_length=8)
    phone: Optional[str] = None


class UserOut(ORMModel):
    id: int
    email: EmailStr
    name: str
    phone: Optional[str] = None
    is_admin: bool
    account_status: AccountStatus
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class MeOut(BaseModel):
    user: UserOut
    is_impersonating: bool = False
    original_admin_id: Optional[int] = None


# ---------------- Listing ----------------
class ListingCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    category: str = "general"
    price_per_piece: float = Field(..., gt=0)
    quantity_total: int = Field(..., gt=0)
    min_per_buyer: Optional[int] = Field(default=None, gt=0)
    max_per_buyer: Optional[int] = Field(default=None, gt=0)
    pickup_address: str = ""
    pickup_instructions: Optional[str] = None
    publish: bool = False


class ListingOut(ORMModel):
    id: int
    seller_id: int
    title: str
    description: str
    category: str
    price_per_piece: float
    quantity_total: int
    quantity_available: int
    min_per_buyer: Optional[int] = None
    max_per_buyer: Optional[int] = None
    pickup_address: str
    pickup_instructions: Optional[str] = None
    status: ListingStatus
    is_active: bool
    published_at: Optional[datetime] = None
    created_at: datetime


class InventoryAuditOut(BaseModel):
    ok: bool
    hints: List[str]
    stats: Dict[str, int]


# ---------------- Reservation ----------------
class ReservationCreate(BaseModel):
    listing_id: int
    quantity: int = Field(..., gt=0)


class ReservationOut(ORMModel):
    id: int
    listing_id: int
    buyer_id: int
    quantity_reserved: int
    total_price: float
    deposit_amount: float
    status: ReservationStatus
    payment_intent_id: Optional[str] = None
    expires_at: datetime
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    created_at: datetime

    # 구매자 본인에게만 채움 (픽업 코드/QR)
    verification_code: Optional[str] = None
    qr_code_hash: Optional[str] = None

    # 계산 필드 (라우터에서 채움)
    phase: Optional[str] = None
    seconds_until_expiry: Optional[int] = None


class VerifyCodeIn(BaseModel):
    verification_code: str = Field(..., min_length=1, max_length=12)


class CompletePickupIn(BaseModel):
    verification_code: Optional[str] = None


class ExpireSweepOut(BaseModel):
    found: int
    cancelled: int
    failed: int
    skipped: int = 0
    details: List[Dict[str, Any]] = Field(default_factory=list)


class EventLogOut(ORMModel):
    id: int
    event_type: EventType
    actor_type: Optional[str] = None
    actor_id: Optional[int] = None
    amount: Optional[float] = None
    qty: Optional[int] = None
    reason: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime


# ---------------- Payments ----------------
class DepositPaymentIn(BaseModel):
    reservation_id: int


class DepositPaymentOut(BaseModel):
    client_secret: str
    payment_intent_id: str
    deposit_amount: float
    currency: str


class VerifyPaymentIn(BaseModel):
    payment_intent_id: str


class VerifyPaymentOut(BaseModel):
    success: bool
    already_confirmed: bool
    reservation_id: int


class PaymentStatusOut(BaseModel):
    status: str
    deposit_paid: bool
    amount: Optional[float] = None
    currency: Optional[str] = None


class WebhookEventIn(BaseModel):
    type: str
    payment_intent_id: str


class RefundIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


# ---------------- Chat ----------------
class ConversationOut(ORMModel):
    id: int
    reservation_id: Optional[int] = None
    listing_id: int
    buyer_id: int
    seller_id: int
    last_message_at: Optional[datetime] = None


class ConversationSummaryOut(BaseModel):
    id: int
    reservation_id: Optional[int] = None
    listing_id: int
    other_user_id: int
    last_message_at: Optional[datetime] = None
    unread_count: int


class MessageIn(BaseModel):
    content: str = ""
    attachments: Optional[List[str]] = None


class MessageOut(ORMModel):
    id: int
    conversation_id: int
    sender_id: int
    content: str
    attachments: List[str] = Field(default_factory=list)
    is_read: bool
    created_at: Optional[datetime] = None


# ---------------- Ratings ----------------
class RatingIn(BaseModel):
    score: int = Field(..., ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=500)


class RatingSubmitOut(BaseModel):
    success: bool
    rating_id: int
    both_rated: bool
    was_update: bool


class RatingItem(BaseModel):
    id: int
    score: int
    comment: Optional[str] = None
    rating_type: RatingType
    created_at: Optional[datetime] = None


class ReservationRatingsOut(BaseModel):
    both_rated: bool
    can_rate: bool
    own_rating: Optional[RatingItem] = None
    other_rating: Optional[RatingItem] = None


class UserRatingsOut(BaseModel):
    ratings: List[RatingItem]
    total: int
    has_more: bool


# ---------------- Admin ----------------
class ImpersonationStartIn(BaseModel):
    user_id: int
    reason: Optional[str] = Field(default=None, max_length=500)


class ImpersonationLogOut(ORMModel):
    id: int
    admin_id: int
    impersonated_user_id: int
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None


class ImpersonationLogsOut(BaseModel):
    logs: List[ImpersonationLogOut]
    total: int
    has_more: bool


class AccountStatusIn(BaseModel):
    status: AccountStatus
