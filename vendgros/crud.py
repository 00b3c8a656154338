# vendgros/crud.py
from __future__ import annotations

import hashlib
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from vendgros.core.time_policy import add_minutes, ensure_aware_utc, now_utc
from vendgros.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from vendgros.models import (
    HOLDING_STATUSES,
    AccountStatus,
    EventLog,
    EventType,
    Listing,
    ListingStatus,
    Reservation,
    ReservationStatus,
    User,
)
from vendgros.policy.runtime import get_policy
from vendgros.security.auth import get_password_hash, verify_password

logger = logging.getLogger(__name__)

__all__ = [
    "NotFoundError", "ConflictError", "ForbiddenError", "ValidationError",
]

# ---------------------------------------------------------------------
# 공용 유틸
# ---------------------------------------------------------------------
_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _utcnow() -> datetime:
    return now_utc()


def _money(x: float) -> float:
    return round(float(x) + 1e-9, 2)


def _log_event(
    db: Session,
    *,
    event_type: EventType,
    actor_type: Optional[str] = None,
    actor_id: Optional[int] = None,
    listing_id: Optional[int] = None,
    reservation_id: Optional[int] = None,
    amount: Optional[float] = None,
    qty: Optional[int] = None,
    reason: Optional[str] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    # commit 은 호출한 쪽 트랜잭션에 맡긴다
    db.add(EventLog(
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        listing_id=listing_id,
        reservation_id=reservation_id,
        amount=amount,
        qty=qty,
        reason=reason,
        meta=meta,
        created_at=_utcnow(),
    ))


# =========================================================
# 👥 User
# =========================================================
def create_user(
    db: Session,
    *,
    email: str,
    name: str,
    password: str,
    phone: Optional[str] = None,
    is_admin: bool = False,
) -> User:
    user = User(
        email=email.strip().lower(),
        name=name,
        password_hash=get_password_hash(password),
        phone=phone,
        is_admin=is_admin,
        account_status=AccountStatus.ACTIVE,
        created_at=_utcnow(),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"email already registered: {email}") from e
    db.refresh(user)
    return user


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError(f"User not found: {user_id}")
    return user


def authenticate_user(db: Session, *, email: str, password: str) -> Optional[User]:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def set_account_status(db: Session, *, user_id: int, status: AccountStatus) -> User:
    user = get_user(db, user_id)
    user.account_status = status
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def require_admin(db: Session, user_id: int) -> User:
    user = get_user(db, user_id)
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


# =========================================================
# 📦 Listing
# =========================================================
def create_listing(
    db: Session,
    *,
    seller_id: int,
    title: str,
    price_per_piece: float,
    quantity_total: int,
    description: str = "",
    category: str = "general",
    min_per_buyer: Optional[int] = None,
    max_per_buyer: Optional[int] = None,
    pickup_address: str = "",
    pickup_instructions: Optional[str] = None,
    publish: bool = False,
) -> Listing:
    get_user(db, seller_id)
    if price_per_piece <= 0:
        raise ValidationError("price_per_piece must be > 0")
    if quantity_total <= 0:
        raise ValidationError("quantity_total must be > 0")
    if min_per_buyer is not None and min_per_buyer <= 0:
        raise ValidationError("min_per_buyer must be > 0")
    if max_per_buyer is not None and max_per_buyer <= 0:
        raise ValidationError("max_per_buyer must be > 0")
    if min_per_buyer is not None and max_per_buyer is not None and min_per_buyer > max_per_buyer:
        raise ValidationError("min_per_buyer cannot exceed max_per_buyer")

    now = _utcnow()
    listing = Listing(
        seller_id=seller_id,
        title=title,
        description=description,
        category=category,
        price_per_piece=float(price_per_piece),
        quantity_total=quantity_total,
        quantity_available=quantity_total,
        min_per_buyer=min_per_buyer,
        max_per_buyer=max_per_buyer,
        pickup_address=pickup_address,
        pickup_instructions=pickup_instructions,
        status=ListingStatus.PUBLISHED if publish else ListingStatus.DRAFT,
        published_at=now if publish else None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


def get_listing(db: Session, listing_id: int) -> Listing:
    listing = db.get(Listing, listing_id)
    if not listing:
        raise NotFoundError(f"Listing not found: {listing_id}")
    return listing


def publish_listing(db: Session, *, listing_id: int, seller_id: int) -> Listing:
    listing = get_listing(db, listing_id)
    if listing.seller_id != seller_id:
        raise ForbiddenError("not owned by seller")
    if listing.status not in (ListingStatus.DRAFT, ListingStatus.PENDING_REVIEW):
        raise ConflictError(f"cannot publish: status={listing.status.value}")

    listing.status = ListingStatus.PUBLISHED
    listing.published_at = _utcnow()
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing


# ---------------------------------------------------
# ===== Inventory hold / release (원자적 조건부 UPDATE) =====
# ---------------------------------------------------
def _hold_inventory(db: Session, listing_id: int, qty: int) -> bool:
    """
    quantity_available >= qty 일 때만 차감. 동시 예약끼리 경쟁해도
    DB가 한 행 업데이트를 직렬화하므로 음수로 내려가지 않는다.
    """
    res = db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.quantity_available >= qty)
        .values(quantity_available=Listing.quantity_available - qty)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def _release_inventory(db: Session, listing_id: int, qty: int) -> bool:
    res = db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.quantity_available + qty <= Listing.quantity_total)
        .values(quantity_available=Listing.quantity_available + qty)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        logger.error("inventory release skipped: listing=%s qty=%s would exceed total", listing_id, qty)
        return False
    return True


def _sync_listing_status(db: Session, listing_id: int) -> None:
    listing = db.get(Listing, listing_id)
    if listing is None:
        return
    db.refresh(listing, attribute_names=["quantity_available", "status"])

    if listing.status == ListingStatus.PUBLISHED and listing.quantity_available == 0:
        listing.status = ListingStatus.RESERVED
        db.add(listing)
    elif listing.status == ListingStatus.RESERVED and listing.quantity_available > 0:
        listing.status = ListingStatus.PUBLISHED
        db.add(listing)


def _transition(
    db: Session,
    reservation_id: int,
    *,
    from_statuses: Iterable[ReservationStatus],
    to_status: ReservationStatus,
    **values: Any,
) -> bool:
    """
    from_statuses 중 하나일 때만 상태 전환. 동시에 두 경로(결제 확정 vs 만료 스윕)가
    같은 예약을 건드려도 한쪽만 rowcount == 1 을 받는다.
    """
    now = _utcnow()
    res = db.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id, Reservation.status.in_(list(from_statuses)))
        .values(status=to_status, updated_at=now, **values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def _reload(db: Session, reservation_id: int) -> Reservation:
    resv = db.get(Reservation, reservation_id)
    if resv is None:
        raise NotFoundError("Reservation not found")
    db.refresh(resv)
    return resv


def audit_listing_inventory(db: Session, listing_id: int) -> dict:
    listing = get_listing(db, listing_id)

    row = db.query(
        func.coalesce(func.sum(case((Reservation.status == ReservationStatus.PENDING, Reservation.quantity_reserved), else_=0)), 0).label("pending_qty"),
        func.coalesce(func.sum(case((Reservation.status == ReservationStatus.CONFIRMED, Reservation.quantity_reserved), else_=0)), 0).label("confirmed_qty"),
        func.coalesce(func.sum(case((Reservation.status == ReservationStatus.COMPLETED, Reservation.quantity_reserved), else_=0)), 0).label("completed_qty"),
        func.coalesce(func.sum(case((Reservation.status == ReservationStatus.NO_SHOW, Reservation.quantity_reserved), else_=0)), 0).label("no_show_qty"),
        func.coalesce(func.sum(case((Reservation.status == ReservationStatus.CANCELLED, Reservation.quantity_reserved), else_=0)), 0).label("cancelled_qty"),
    ).filter(Reservation.listing_id == listing_id).one()

    held = int(
        db.query(func.coalesce(func.sum(Reservation.quantity_reserved), 0))
        .filter(Reservation.listing_id == listing_id, Reservation.status.in_(HOLDING_STATUSES))
        .scalar()
    )
    taken = int(listing.quantity_total) - int(listing.quantity_available)

    hints: List[str] = []
    if held != taken:
        hints.append(f"held mismatch: total-available={taken} vs sum(PENDING+CONFIRMED+COMPLETED)={held}")
    if listing.quantity_available < 0:
        hints.append("quantity_available < 0 (over-allocated)")

    return {
        "ok": not hints,
        "hints": hints,
        "stats": {
            "listing_id": listing_id,
            "quantity_total": int(listing.quantity_total),
            "quantity_available": int(listing.quantity_available),
            "pending_qty": int(row.pending_qty),
            "confirmed_qty": int(row.confirmed_qty),
            "completed_qty": int(row.completed_qty),
            "no_show_qty": int(row.no_show_qty),
            "cancelled_qty": int(row.cancelled_qty),
        },
    }


# =========================================================
# 🧾 Reservations: 결제 타임아웃 라이프사이클
# =========================================================
def _new_verification_code(db: Session, length: int) -> str:
    for _ in range(20):
        code = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
        exists = db.query(Reservation.id).filter(Reservation.verification_code == code).first()
        if not exists:
            return code
    raise ConflictError("could not allocate a unique verification code")


def _new_qr_code_hash(listing_id: int, buyer_id: int) -> str:
    seed = f"{listing_id}:{buyer_id}:{secrets.token_hex(16)}"
    return hashlib.sha256(seed.encode("utf-8")).hexdigest()


def create_reservation(
    db: Session,
    *,
    listing_id: int,
    buyer_id: int,
    quantity: int,
) -> Reservation:
    if quantity <= 0:
        raise ValidationError("quantity must be > 0")

    policy = get_policy().reservation

    buyer = get_user(db, buyer_id)
    if buyer.account_status != AccountStatus.ACTIVE:
        raise ForbiddenError(f"account not active: {buyer.account_status.value}")

    listing = get_listing(db, listing_id)
    if not listing.is_active or listing.status not in (ListingStatus.PUBLISHED, ListingStatus.RESERVED):
        raise ConflictError(f"listing not available: status={listing.status.value}")
    if listing.seller_id == buyer_id:
        raise ForbiddenError("cannot reserve own listing")
    if listing.min_per_buyer is not None and quantity < listing.min_per_buyer:
        raise ValidationError(f"minimum per buyer is {listing.min_per_buyer}")
    if listing.max_per_buyer is not None and quantity > listing.max_per_buyer:
        raise ValidationError(f"maximum per buyer is {listing.max_per_buyer}")

    total_price = _money(listing.price_per_piece * quantity)
    deposit_amount = _money(total_price * policy.deposit_rate)
    code = _new_verification_code(db, policy.verification_code_length)

    try:
        if not _hold_inventory(db, listing_id, quantity):
            db.rollback()
            db.refresh(listing)
            raise ConflictError(f"insufficient quantity (available={listing.quantity_available})")

        now = _utcnow()
        resv = Reservation(
            listing_id=listing_id,
            buyer_id=buyer_id,
            quantity_reserved=quantity,
            total_price=total_price,
            deposit_amount=deposit_amount,
            qr_code_hash=_new_qr_code_hash(listing_id, buyer_id),
            verification_code=code,
            status=ReservationStatus.PENDING,
            expires_at=add_minutes(now, policy.payment_hold_minutes),
            created_at=now,
            updated_at=now,
        )
        db.add(resv)
        db.flush()

        _sync_listing_status(db, listing_id)
        _log_event(
            db,
            event_type=EventType.RESERVATION_CREATED,
            actor_type="buyer",
            actor_id=buyer_id,
            listing_id=listing_id,
            reservation_id=resv.id,
            amount=deposit_amount,
            qty=quantity,
        )
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("reservation could not be created") from e

    db.refresh(resv)
    logger.info(
        "reservation %s created: listing=%s buyer=%s qty=%s expires_at=%s",
        resv.id, listing_id, buyer_id, quantity, resv.expires_at,
    )
    return resv


def get_reservation(db: Session, reservation_id: int) -> Reservation:
    resv = db.get(Reservation, reservation_id)
    if not resv:
        raise NotFoundError("Reservation not found")
    return resv


def get_reservation_for_party(db: Session, reservation_id: int, user_id: int) -> Reservation:
    """구매자 또는 판매자만 조회 가능."""
    resv = get_reservation(db, reservation_id)
    if resv.buyer_id != user_id and resv.listing.seller_id != user_id:
        raise ForbiddenError("Not authorized")
    return resv


def cancel_reservation(
    db: Session,
    *,
    reservation_id: int,
    buyer_id: Optional[int] = None,
    reason: str = "buyer_cancelled",
    actor_type: str = "buyer",
) -> Reservation:
    """PENDING → CANCELLED, 홀드 반환. buyer_id 가 주어지면 본인 예약만."""
    resv = get_reservation(db, reservation_id)
    if buyer_id is not None and resv.buyer_id != buyer_id:
        raise ForbiddenError("not owned by buyer")
    if resv.status != ReservationStatus.PENDING:
        raise ConflictError(f"cannot cancel: status={resv.status.value}")

    now = _utcnow()
    if not _transition(
        db, reservation_id,
        from_statuses=(ReservationStatus.PENDING,),
        to_status=ReservationStatus.CANCELLED,
        cancelled_at=now,
        cancel_reason=reason,
    ):
        db.rollback()
        current = _reload(db, reservation_id)
        raise ConflictError(f"cannot cancel: status={current.status.value}")

    _release_inventory(db, resv.listing_id, resv.quantity_reserved)
    _sync_listing_status(db, resv.listing_id)
    _log_event(
        db,
        event_type=EventType.RESERVATION_CANCELLED,
        actor_type=actor_type,
        actor_id=buyer_id,
        listing_id=resv.listing_id,
        reservation_id=reservation_id,
        qty=resv.quantity_reserved,
        reason=reason,
    )
    db.commit()
    logger.info("reservation %s cancelled (%s)", reservation_id, reason)
    return _reload(db, reservation_id)


@dataclass
class ExpireSweepResult:
    cancelled: int = 0
    failed: int = 0
    skipped: int = 0
    details: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def found(self) -> int:
        return len(self.details)


def _expire_one(db: Session, resv: Reservation, now: datetime) -> bool:
    if not _transition(
        db, resv.id,
        from_statuses=(ReservationStatus.PENDING,),
        to_status=ReservationStatus.CANCELLED,
        cancelled_at=now,
        cancel_reason="payment_timeout",
    ):
        # 그 사이 결제 확정/취소됨
        db.rollback()
        return False

    _release_inventory(db, resv.listing_id, resv.quantity_reserved)
    _sync_listing_status(db, resv.listing_id)
    _log_event(
        db,
        event_type=EventType.RESERVATION_EXPIRED,
        actor_type="system",
        listing_id=resv.listing_id,
        reservation_id=resv.id,
        qty=resv.quantity_reserved,
        reason="payment_timeout",
    )
    db.commit()
    return True


def expire_reservations(
    db: Session,
    *,
    now: Optional[datetime] = None,
    listing_id: Optional[int] = None,
    limit: Optional[int] = None,
) -> ExpireSweepResult:
    """
    PENDING + expires_at 경과 → CANCELLED(payment_timeout), 재고 반환.
    예약 한 건마다 별도 트랜잭션. 한 건이 실패해도 나머지는 계속 진행.
    """
    ts = ensure_aware_utc(now) if now is not None else _utcnow()

    q = db.query(Reservation).filter(
        Reservation.status == ReservationStatus.PENDING,
        Reservation.expires_at < ts,
    )
    if listing_id is not None:
        q = q.filter(Reservation.listing_id == listing_id)
    q = q.order_by(Reservation.expires_at.asc(), Reservation.id.asc())
    if limit is not None:
        q = q.limit(limit)

    rows: List[Reservation] = q.all()
    result = ExpireSweepResult()

    for r in rows:
        try:
            if _expire_one(db, r, ts):
                result.cancelled += 1
                result.details.append({"id": r.id, "success": True})
            else:
                result.skipped += 1
                result.details.append({"id": r.id, "success": False, "skipped": True})
        except SQLAlchemyError as e:
            db.rollback()
            result.failed += 1
            result.details.append({"id": r.id, "success": False, "error": e.__class__.__name__})
            logger.exception("failed to expire reservation %s", r.id)

    if rows:
        logger.info(
            "expire sweep: found=%s cancelled=%s skipped=%s failed=%s",
            len(rows), result.cancelled, result.skipped, result.failed,
        )
    return result


def next_pending_expiry(db: Session) -> Optional[datetime]:
    """가장 빨리 만료될 PENDING 예약의 expires_at (없으면 None)."""
    row = (
        db.query(Reservation.expires_at)
        .filter(Reservation.status == ReservationStatus.PENDING)
        .order_by(Reservation.expires_at.asc())
        .limit(1)
        .first()
    )
    if not row or row[0] is None:
        return None
    return ensure_aware_utc(row[0])


@dataclass
class ConfirmResult:
    reservation: Reservation
    already_confirmed: bool


def confirm_reservation(
    db: Session,
    *,
    reservation_id: int,
    payment_intent_id: str,
    actor_type: str = "system",
) -> ConfirmResult:
    """
    결제 성공 → PENDING → CONFIRMED. 홀드된 재고가 그대로 판매분이 된다.

    - 이미 CONFIRMED(같은 인텐트)면 멱등 처리
    - 만료 시각이 지났어도 아직 스윕 전이면 확정 (돈은 이미 결제됨)
    - CANCELLED 면 ConflictError
    """
    resv = get_reservation(db, reservation_id)

    if resv.status in (ReservationStatus.CONFIRMED, ReservationStatus.COMPLETED, ReservationStatus.NO_SHOW):
        if resv.payment_intent_id and resv.payment_intent_id != payment_intent_id:
            raise ConflictError("reservation already paid with a different payment")
        return ConfirmResult(reservation=resv, already_confirmed=True)

    if resv.status == ReservationStatus.CANCELLED:
        raise ConflictError(f"cannot confirm: status={resv.status.value}")

    now = _utcnow()
    if not _transition(
        db, reservation_id,
        from_statuses=(ReservationStatus.PENDING,),
        to_status=ReservationStatus.CONFIRMED,
        confirmed_at=now,
        payment_intent_id=payment_intent_id,
    ):
        # 동시에 다른 경로가 상태를 바꿈 → 현재 상태로 다시 판단
        db.rollback()
        current = _reload(db, reservation_id)
        if current.status == ReservationStatus.CONFIRMED and current.payment_intent_id == payment_intent_id:
            return ConfirmResult(reservation=current, already_confirmed=True)
        raise ConflictError(f"cannot confirm: status={current.status.value}")

    _log_event(
        db,
        event_type=EventType.RESERVATION_CONFIRMED,
        actor_type=actor_type,
        actor_id=resv.buyer_id if actor_type == "buyer" else None,
        listing_id=resv.listing_id,
        reservation_id=reservation_id,
        amount=resv.deposit_amount,
        qty=resv.quantity_reserved,
        meta={"payment_intent_id": payment_intent_id},
    )
    db.commit()
    logger.info("reservation %s confirmed (intent=%s)", reservation_id, payment_intent_id)
    return ConfirmResult(reservation=_reload(db, reservation_id), already_confirmed=False)


def verify_code(db: Session, *, seller_id: int, verification_code: str) -> Reservation:
    """픽업 현장에서 판매자가 구매자 코드(QR/6자리)를 확인."""
    code = (verification_code or "").strip().upper()
    if not code:
        raise ValidationError("verification code required")

    resv = db.query(Reservation).filter(Reservation.verification_code == code).first()
    if not resv:
        raise NotFoundError("Invalid verification code")
    if resv.listing.seller_id != seller_id:
        raise ForbiddenError("This reservation is not for your listing")
    if resv.status == ReservationStatus.PENDING:
        raise ConflictError("Reservation deposit has not been paid")
    if resv.status != ReservationStatus.CONFIRMED:
        raise ConflictError(f"Reservation is not awaiting pickup: status={resv.status.value}")
    return resv


def _require_seller_confirmed(db: Session, *, seller_id: int, reservation_id: int) -> Reservation:
    resv = get_reservation(db, reservation_id)
    if resv.listing.seller_id != seller_id:
        raise ForbiddenError("This reservation is not for your listing")
    if resv.status != ReservationStatus.CONFIRMED:
        raise ConflictError(f"Reservation is not awaiting pickup: status={resv.status.value}")
    return resv


def complete_pickup(
    db: Session,
    *,
    seller_id: int,
    reservation_id: int,
    verification_code: Optional[str] = None,
) -> Reservation:
    resv = _require_seller_confirmed(db, seller_id=seller_id, reservation_id=reservation_id)
    if verification_code is not None and verification_code.strip().upper() != resv.verification_code:
        raise ValidationError("verification code does not match")

    now = _utcnow()
    if not _transition(
        db, reservation_id,
        from_statuses=(ReservationStatus.CONFIRMED,),
        to_status=ReservationStatus.COMPLETED,
        completed_at=now,
    ):
        db.rollback()
        current = _reload(db, reservation_id)
        raise ConflictError(f"cannot complete: status={current.status.value}")

    # 전량 판매 + 진행 중 예약 없음 → 리스팅 완료
    listing = db.get(Listing, resv.listing_id)
    db.refresh(listing)
    open_count = (
        db.query(func.count(Reservation.id))
        .filter(
            Reservation.listing_id == listing.id,
            Reservation.status.in_([ReservationStatus.PENDING, ReservationStatus.CONFIRMED]),
        )
        .scalar()
    )
    if listing.quantity_available == 0 and not open_count:
        listing.status = ListingStatus.COMPLETED
        db.add(listing)

    _log_event(
        db,
        event_type=EventType.RESERVATION_COMPLETED,
        actor_type="seller",
        actor_id=seller_id,
        listing_id=resv.listing_id,
        reservation_id=reservation_id,
        amount=resv.total_price,
        qty=resv.quantity_reserved,
    )
    db.commit()
    logger.info("reservation %s completed by seller %s", reservation_id, seller_id)
    return _reload(db, reservation_id)


def mark_no_show(db: Session, *, seller_id: int, reservation_id: int) -> Reservation:
    """
    CONFIRMED → NO_SHOW. 구매자 예약금은 몰수, 물량은 리스팅으로 반환.
    """
    resv = _require_seller_confirmed(db, seller_id=seller_id, reservation_id=reservation_id)

    if not _transition(
        db, reservation_id,
        from_statuses=(ReservationStatus.CONFIRMED,),
        to_status=ReservationStatus.NO_SHOW,
    ):
        db.rollback()
        current = _reload(db, reservation_id)
        raise ConflictError(f"cannot mark no-show: status={current.status.value}")

    _release_inventory(db, resv.listing_id, resv.quantity_reserved)
    _sync_listing_status(db, resv.listing_id)
    _log_event(
        db,
        event_type=EventType.RESERVATION_NO_SHOW,
        actor_type="seller",
        actor_id=seller_id,
        listing_id=resv.listing_id,
        reservation_id=reservation_id,
        qty=resv.quantity_reserved,
    )
    db.commit()
    logger.info("reservation %s marked no-show by seller %s", reservation_id, seller_id)
    return _reload(db, reservation_id)


def cancel_paid_reservation(
    db: Session,
    *,
    reservation_id: int,
    admin_id: int,
    reason: str,
    commit: bool = True,
) -> Reservation:
    """
    관리자 환불: PENDING/CONFIRMED → CANCELLED, 재고 반환.
    commit=False 면 전환만 해두고 커밋은 호출자 몫 (processor 환불 성공 후 커밋).
    """
    resv = get_reservation(db, reservation_id)
    now = _utcnow()
    if not _transition(
        db, reservation_id,
        from_statuses=(ReservationStatus.PENDING, ReservationStatus.CONFIRMED),
        to_status=ReservationStatus.CANCELLED,
        cancelled_at=now,
        cancel_reason=f"refund: {reason}",
    ):
        db.rollback()
        current = _reload(db, reservation_id)
        raise ConflictError(f"cannot refund: status={current.status.value}")

    _release_inventory(db, resv.listing_id, resv.quantity_reserved)
    _sync_listing_status(db, resv.listing_id)
    _log_event(
        db,
        event_type=EventType.RESERVATION_REFUNDED,
        actor_type="admin",
        actor_id=admin_id,
        listing_id=resv.listing_id,
        reservation_id=reservation_id,
        amount=resv.deposit_amount,
        qty=resv.quantity_reserved,
        reason=reason,
    )
    if commit:
        db.commit()
        logger.info("reservation %s refunded by admin %s (%s)", reservation_id, admin_id, reason)
    return _reload(db, reservation_id)


# ---------------------------------------------------
# 조회
# ---------------------------------------------------
def list_buyer_reservations(
    db: Session,
    *,
    buyer_id: int,
    status: Optional[ReservationStatus] = None,
) -> List[Reservation]:
    q = db.query(Reservation).filter(Reservation.buyer_id == buyer_id)
    if status is not None:
        q = q.filter(Reservation.status == status)
    return q.order_by(Reservation.id.desc()).all()


def list_pending_payments(db: Session, *, buyer_id: int) -> List[Reservation]:
    """결제 대기 중이고 아직 만료되지 않은 구매자 예약."""
    now = _utcnow()
    return (
        db.query(Reservation)
        .filter(
            Reservation.buyer_id == buyer_id,
            Reservation.status == ReservationStatus.PENDING,
            Reservation.expires_at >= now,
        )
        .order_by(Reservation.expires_at.asc())
        .all()
    )


def list_pending_pickups(db: Session, *, seller_id: int) -> List[Reservation]:
    return (
        db.query(Reservation)
        .join(Listing, Listing.id == Reservation.listing_id)
        .filter(
            Listing.seller_id == seller_id,
            Reservation.status == ReservationStatus.CONFIRMED,
        )
        .order_by(Reservation.confirmed_at.asc(), Reservation.id.asc())
        .all()
    )


def list_listing_reservations(db: Session, *, listing_id: int, seller_id: int) -> List[Reservation]:
    listing = get_listing(db, listing_id)
    if listing.seller_id != seller_id:
        raise ForbiddenError("not owned by seller")
    return (
        db.query(Reservation)
        .filter(Reservation.listing_id == listing_id)
        .order_by(Reservation.id.desc())
        .all()
    )


def search_reservations(
    db: Session,
    *,
    listing_id: Optional[int] = None,
    buyer_id: Optional[int] = None,
    status: Optional[ReservationStatus] = None,
    after_id: Optional[int] = None,
    limit: int = 50,
) -> List[Reservation]:
    """관리자 검색 (커서: after_id 보다 작은 id 부터 내림차순)."""
    conds = []
    if listing_id is not None:
        conds.append(Reservation.listing_id == listing_id)
    if buyer_id is not None:
        conds.append(Reservation.buyer_id == buyer_id)
    if status is not None:
        conds.append(Reservation.status == status)
    if after_id is not None:
        conds.append(Reservation.id < after_id)

    stmt = select(Reservation)
    if conds:
        stmt = stmt.where(and_(*conds))
    stmt = stmt.order_by(Reservation.id.desc()).limit(limit)
    return list(db.execute(stmt).scalars().all())


def list_events(db: Session, *, reservation_id: int) -> List[EventLog]:
    return (
        db.query(EventLog)
        .filter(EventLog.reservation_id == reservation_id)
        .order_by(EventLog.id.asc())
        .all()
    )
