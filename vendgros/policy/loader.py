# vendgros/policy/loader.py
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml

from vendgros.policy.errors import PolicyConfigError
from vendgros.policy.guardrails import validate_policy
from vendgros.policy.schema import (
    ChatPolicy,
    ImpersonationPolicy,
    PolicyBundle,
    RatingPolicy,
    ReservationPolicy,
)


def _deep_get(d: dict, key: str) -> Any:
    if key not in d:
        raise PolicyConfigError(f"Missing key: {key}")
    return d[key]


def _section(raw: dict, key: str, *, required: bool = True) -> dict:
    v = raw.get(key)
    if v is None:
        if required:
            raise PolicyConfigError(f"Missing section: {key}")
        return {}
    if not isinstance(v, dict):
        raise PolicyConfigError(f"Section '{key}' must be a mapping")
    return v


def load_policy_yaml(path: Optional[str] = None) -> PolicyBundle:
    """
    Loads policy bundle from YAML.
    - default: vendgros/policy/defaults.yaml
    - override path by env VENDGROS_POLICY_PATH or param
    """
    if path is None:
        path = os.environ.get("VENDGROS_POLICY_PATH")

    if path is None:
        base = Path(__file__).resolve().parent
        path = str(base / "defaults.yaml")

    p = Path(path)
    if not p.exists():
        raise PolicyConfigError(f"Policy YAML not found: {p}")

    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise PolicyConfigError(f"Policy YAML parse error: {p}: {e}") from e

    resv_raw = _section(raw, "reservation")
    rating_raw = _section(raw, "rating")
    chat_raw = _section(raw, "chat", required=False)
    imp_raw = _section(raw, "impersonation", required=False)

    bundle = PolicyBundle(
        reservation=ReservationPolicy(
            deposit_rate=float(_deep_get(resv_raw, "deposit_rate")),
            payment_hold_minutes=int(_deep_get(resv_raw, "payment_hold_minutes")),
            currency=str(resv_raw.get("currency") or "cad").lower(),
            verification_code_length=int(resv_raw.get("verification_code_length") or 6),
            worker_idle_seconds=int(resv_raw.get("worker_idle_seconds") or 60),
        ),
        rating=RatingPolicy(
            window_days=int(_deep_get(rating_raw, "window_days")),
            min_score=int(rating_raw.get("min_score", 1)),
            max_score=int(rating_raw.get("max_score", 5)),
            comment_max_length=int(rating_raw.get("comment_max_length", 500)),
        ),
    )

    if chat_raw:
        statuses = chat_raw.get("allowed_statuses") or list(ChatPolicy().allowed_statuses)
        bundle = PolicyBundle(
            reservation=bundle.reservation,
            rating=bundle.rating,
            chat=ChatPolicy(allowed_statuses=tuple(str(s).strip().upper() for s in statuses)),
            impersonation=bundle.impersonation,
        )

    if imp_raw:
        bundle = PolicyBundle(
            reservation=bundle.reservation,
            rating=bundle.rating,
            chat=bundle.chat,
            impersonation=ImpersonationPolicy(
                cookie_name=str(imp_raw.get("cookie_name") or "vg_impersonation"),
                token_expiry_hours=int(imp_raw.get("token_expiry_hours") or 1),
            ),
        )

    validate_policy(bundle)
    return bundle
