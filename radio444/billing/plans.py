"""Plan catalog loading: plan credits, Razorpay plan ids and redeem codes."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from radio444.core.config import get_settings


DEFAULT_PLAN = "creator"


@dataclass(frozen=True)
class RazorpayPlan:
    plan: str
    credits: int


@dataclass(frozen=True)
class PlanCatalog:
    plans: Dict[str, Dict[str, int]] = field(default_factory=dict)
    razorpay_plans: Dict[str, RazorpayPlan] = field(default_factory=dict)
    redeem_codes: Dict[str, int] = field(default_factory=dict)


def _resolve_plan_path() -> Path:
    settings = get_settings()
    configured = Path(settings.plans_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


def _int_mapping(raw: Any) -> Dict[str, int]:
    if not isinstance(raw, dict):
        return {}
    return {str(key): value for key, value in raw.items() if isinstance(value, int)}


@lru_cache(maxsize=1)
def load_plans() -> PlanCatalog:
    plan_path = _resolve_plan_path()
    with plan_path.open("r", encoding="utf-8") as file:
        content = yaml.safe_load(file) or {}
    if not isinstance(content, dict):
        raise ValueError("Invalid plans file format")

    plans: Dict[str, Dict[str, int]] = {}
    for plan_name, limits in (content.get("plans") or {}).items():
        if isinstance(plan_name, str) and isinstance(limits, dict):
            plans[plan_name] = _int_mapping(limits)

    razorpay_plans: Dict[str, RazorpayPlan] = {}
    for plan_id, entry in (content.get("razorpay_plans") or {}).items():
        if not isinstance(entry, dict):
            continue
        credits = entry.get("credits")
        if isinstance(credits, int):
            razorpay_plans[str(plan_id)] = RazorpayPlan(plan=str(entry.get("plan") or DEFAULT_PLAN), credits=credits)

    redeem_codes = {code.upper(): credits for code, credits in _int_mapping(content.get("redeem_codes")).items()}
    return PlanCatalog(plans=plans, razorpay_plans=razorpay_plans, redeem_codes=redeem_codes)


def detect_plan_type(plan_id: Optional[str]) -> str:
    """Plan tier from a Razorpay plan id; unknown ids fall back to the id markers."""

    normalized = (plan_id or "").strip()
    configured = load_plans().razorpay_plans.get(normalized)
    if configured is not None:
        return configured.plan
    if "S2DI" in normalized or "S2DO" in normalized:
        return "studio"
    if "S2DH" in normalized or "S2DN" in normalized:
        return "pro"
    return DEFAULT_PLAN


def credits_for_razorpay_plan(plan_id: Optional[str]) -> int:
    configured = load_plans().razorpay_plans.get((plan_id or "").strip())
    return configured.credits if configured is not None else 0


def redeem_code_credits(code: str) -> Optional[int]:
    return load_plans().redeem_codes.get(code.strip().upper())
