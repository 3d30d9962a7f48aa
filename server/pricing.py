# server/pricing.py
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

FREE = "free"
DAY_PASS = "day_pass"
PRO = "pro"

# web-tools 한도: 무료는 요청당 3개, 하루 5회
WEB_TOOL_LIMITS: Dict[str, Dict[str, int]] = {
    "free": {"max_items_per_job": 3, "max_jobs_per_day": 5},
    "paid": {"max_items_per_job": 20, "max_jobs_per_day": 200},
}

BLOCK_BATCH_ON_FREE = True


@dataclass
class PaymentRequirement:
    requires_payment: bool
    reason: Optional[str]  # None | "batch" | "rate_limit"
    item_count: int
    checks_today: int
    plan: str
    max_free_batch: int
    max_free_per_day: int

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        return {
            "requiresPayment": d["requires_payment"],
            "reason": d["reason"],
            "itemCount": d["item_count"],
            "checksToday": d["checks_today"],
            "plan": d["plan"],
            "maxFreeBatch": d["max_free_batch"],
            "maxFreePerDay": d["max_free_per_day"],
        }


def limits_for(plan: str) -> Dict[str, int]:
    return WEB_TOOL_LIMITS["free"] if plan == FREE else WEB_TOOL_LIMITS["paid"]


def check_payment_requirement(
    *,
    item_count: int,
    plan: str = FREE,
    checks_today: int = 0,
) -> PaymentRequirement:
    """
    Yes/no gate for one redirect-check request.
    Batch size is checked before the daily quota, so "batch" wins when both apply.
    """
    free = limits_for(FREE)
    base = dict(
        item_count=item_count,
        checks_today=checks_today,
        plan=plan,
        max_free_batch=free["max_items_per_job"],
        max_free_per_day=free["max_jobs_per_day"],
    )

    # 유료 플랜은 결제 요구 없음
    if plan != FREE:
        return PaymentRequirement(requires_payment=False, reason=None, **base)

    if BLOCK_BATCH_ON_FREE and item_count > free["max_items_per_job"]:
        return PaymentRequirement(requires_payment=True, reason="batch", **base)

    if checks_today >= free["max_jobs_per_day"]:
        return PaymentRequirement(requires_payment=True, reason="rate_limit", **base)

    return PaymentRequirement(requires_payment=False, reason=None, **base)
