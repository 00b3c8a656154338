# vendgros/models.py
# Vendgros | User / Listing / Reservation + 채팅 / 평가 / 대리접속 로그 / 이벤트 로그
from sqlalchemy import (
    Column, Integer, String, DateTime, Float, ForeignKey, Text, Boolean,
    Enum as SAEnum, JSON, Index, UniqueConstraint, func, CheckConstraint
)
from sqlalchemy.orm import relationship
import enum

from .database import Base


# -------------------------------------------------------
# 🧩 User
# -------------------------------------------------------
class AccountStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=False)
    password_hash = Column(String, nullable=False)
    phone = Column(String, nullable=True)

    is_admin = Column(Boolean, default=False, nullable=False)
    account_status = Column(
        SAEnum(AccountStatus, name="accountstatus"),
        nullable=False,
        default=AccountStatus.ACTIVE,
        server_default=AccountStatus.ACTIVE.value,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    listings = relationship("Listing", back_populates="seller")

    def __repr__(self):
        return f"<User(email='{self.email}', admin={self.is_admin}, status={self.account_status})>"


# -------------------------------------------------------
# 📦 Listing (+ 재고 카운터)
# -------------------------------------------------------
class ListingStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    PENDING_REVIEW = "PENDING_REVIEW"
    PUBLISHED = "PUBLISHED"
    RESERVED = "RESERVED"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class Listing(Base):
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=False, default="general")

    price_per_piece = Column(Float, nullable=False)
    quantity_total = Column(Integer, nullable=False)
    quantity_available = Column(Integer, nullable=False)
    min_per_buyer = Column(Integer, nullable=True)
    max_per_buyer = Column(Integer, nullable=True)

    pickup_address = Column(Text, nullable=False, default="")
    pickup_instructions = Column(Text, nullable=True)

    status = Column(
        SAEnum(ListingStatus, name="listingstatus"),
        nullable=False,
        default=ListingStatus.DRAFT,
        server_default=ListingStatus.DRAFT.value,
    )
    is_active = Column(Boolean, default=True, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    seller = relationship("User", back_populates="listings")
    reservations = relationship("Reservation", back_populates="listing")

    __table_args__ = (
        CheckConstraint("quantity_total >= 0", name="ck_listing_total_nonneg"),
        CheckConstraint("quantity_available >= 0", name="ck_listing_available_nonneg"),
        CheckConstraint("quantity_available <= quantity_total", name="ck_listing_available_not_over"),
        Index("ix_listing_status", "status"),
    )


# -------------------------------------------------------
# 🧾 Reservation
# -------------------------------------------------------
class ReservationStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"
    CANCELLED = "CANCELLED"


# 재고를 점유하고 있는 상태들 (CANCELLED / NO_SHOW 는 재고 반환)
HOLDING_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.COMPLETED,
)

TERMINAL_STATUSES = (
    ReservationStatus.COMPLETED,
    ReservationStatus.NO_SHOW,
    ReservationStatus.CANCELLED,
)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    quantity_reserved = Column(Integer, nullable=False)
    total_price = Column(Float, nullable=False)
    deposit_amount = Column(Float, nullable=False)

    qr_code_hash = Column(String, unique=True, nullable=False)
    verification_code = Column(String(12), unique=True, nullable=False, index=True)

    status = Column(
        SAEnum(ReservationStatus, name="reservationstatus"),
        nullable=False,
        default=ReservationStatus.PENDING,
        server_default=ReservationStatus.PENDING.value,
    )

    payment_intent_id = Column(String, nullable=True, index=True)

    expires_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    listing = relationship("Listing", back_populates="reservations")
    buyer = relationship("User")
    conversation = relationship("Conversation", back_populates="reservation", uselist=False)

    __table_args__ = (
        Index("ix_resv_status_expires", "status", "expires_at"),
        Index("ix_resv_listing_status", "listing_id", "status"),
        Index("ix_resv_buyer_status", "buyer_id", "status"),
        CheckConstraint("quantity_reserved > 0", name="ck_reservation_qty_positive"),
    )


# -------------------------------------------------------
# ⭐ 평가 (블라인드: 양쪽 모두 제출 시 공개)
# -------------------------------------------------------
class RatingType(str, enum.Enum):
    AS_BUYER = "AS_BUYER"    # 판매자가 구매자를 평가
    AS_SELLER = "AS_SELLER"  # 구매자가 판매자를 평가


class Rating(Base):
    __tablename__ = "ratings"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), nullable=False, index=True)
    rater_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    rated_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    rating_type = Column(SAEnum(RatingType, name="ratingtype"), nullable=False)
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    is_visible = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("reservation_id", "rater_id", name="uq_rating_once_per_rater"),
        Index("ix_rating_rated_type", "rated_id", "rating_type"),
        CheckConstraint("score >= 1 AND score <= 5", name="ck_rating_score_range"),
    )


# -------------------------------------------------------
# 💬 채팅 (예약 1:1 대화방)
# -------------------------------------------------------
class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id", ondelete="CASCADE"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    reservation_id = Column(Integer, ForeignKey("reservations.id", ondelete="CASCADE"), unique=True, nullable=True)

    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_sender_id = Column(Integer, nullable=True)

    buyer_last_read_at = Column(DateTime(timezone=True), nullable=True)
    seller_last_read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    reservation = relationship("Reservation", back_populates="conversation")
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    content = Column(Text, nullable=False)
    is_encrypted = Column(Boolean, default=False, nullable=False)
    attachments = Column(JSON, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    conversation = relationship("Conversation", back_populates="messages")


# -------------------------------------------------------
# 🕵️ 관리자 대리접속 감사 로그
# -------------------------------------------------------
class ImpersonationLog(Base):
    __tablename__ = "impersonation_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    impersonated_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    reason = Column(String(500), nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    ended_at = Column(DateTime(timezone=True), nullable=True)


# -------------------------------------------------------
# 🧭 이벤트 로그
# -------------------------------------------------------
class EventType(str, enum.Enum):
    RESERVATION_CREATED = "RESERVATION_CREATED"
    RESERVATION_CONFIRMED = "RESERVATION_CONFIRMED"
    RESERVATION_COMPLETED = "RESERVATION_COMPLETED"
    RESERVATION_NO_SHOW = "RESERVATION_NO_SHOW"
    RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    RESERVATION_REFUNDED = "RESERVATION_REFUNDED"
    PAYMENT_INTENT_CREATED = "PAYMENT_INTENT_CREATED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    RATING_SUBMITTED = "RATING_SUBMITTED"
    IMPERSONATION_STARTED = "IMPERSONATION_STARTED"
    IMPERSONATION_ENDED = "IMPERSONATION_ENDED"


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, index=True)
    event_type = Column(SAEnum(EventType, name="eventtype"), nullable=False)
    actor_type = Column(String, nullable=True)  # 'buyer' | 'seller' | 'system' | 'admin'
    actor_id = Column(Integer, nullable=True)

    listing_id = Column(Integer, nullable=True, index=True)
    reservation_id = Column(Integer, nullable=True, index=True)

    amount = Column(Float, nullable=True)
    qty = Column(Integer, nullable=True)
    reason = Column(String, nullable=True)
    meta = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)

    __table_args__ = (
        Index("ix_event_type_created", "event_type", "created_at"),
    )
