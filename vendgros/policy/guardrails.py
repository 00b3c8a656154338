# vendgros/policy/guardrails.py
from __future__ import annotations

from vendgros.policy.errors import PolicyValidationError
from vendgros.policy.schema import PolicyBundle

_RESERVATION_STATUSES = {"PENDING", "CONFIRMED", "COMPLETED", "NO_SHOW", "CANCELLED"}


def validate_policy(bundle: PolicyBundle) -> None:
    r = bundle.reservation
    rt = bundle.rating

    # --- reservation ---
    if not (0.0 < r.deposit_rate <= 1.0):
        raise PolicyValidationError(f"deposit_rate must be in (0.0, 1.0], got={r.deposit_rate}")

    if r.payment_hold_minutes <= 0 or r.payment_hold_minutes > 24 * 60:
        raise PolicyValidationError(
            f"payment_hold_minutes must be 1~1440, got={r.payment_hold_minutes}"
        )
    if not (4 <= r.verification_code_length <= 12):
        raise PolicyValidationError(
            f"verification_code_length must be 4~12, got={r.verification_code_length}"
        )
    if r.worker_idle_seconds <= 0:
        raise PolicyValidationError(f"worker_idle_seconds must be > 0, got={r.worker_idle_seconds}")

    # --- rating ---
    if rt.window_days <= 0 or rt.window_days > 365:
        raise PolicyValidationError(f"rating window_days must be 1~365, got={rt.window_days}")
    if rt.min_score < 0 or rt.min_score >= rt.max_score:
        raise PolicyValidationError(f"invalid score range: {rt.min_score}..{rt.max_score}")

    # --- chat ---
    unknown = set(bundle.chat.allowed_statuses) - _RESERVATION_STATUSES
    if unknown:
        raise PolicyValidationError(f"unknown chat statuses: {sorted(unknown)}")

    # --- impersonation ---
    if bundle.impersonation.token_expiry_hours <= 0 or bundle.impersonation.token_expiry_hours > 24:
        raise PolicyValidationError(
            f"token_expiry_hours must be 1~24, got={bundle.impersonation.token_expiry_hours}"
        )
