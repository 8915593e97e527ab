"""
Field-level comparison between a local subscription and a provider snapshot.

Pure functions only: no I/O and no hidden state, so the same pair always
yields the same issues in the same order (status, plan, period end).
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from app.core.typing import as_utc
from app.models.subscription import Subscription
from app.services.billing_provider import ProviderSnapshot

DEFAULT_TOLERANCE_HOURS = 1.0


class DiscrepancyKind(str, Enum):
    STATUS_MISMATCH = "status_mismatch"
    PLAN_MISMATCH = "plan_mismatch"
    PERIOD_END_DRIFT = "period_end_drift"


@dataclass(frozen=True)
class Discrepancy:
    kind: DiscrepancyKind
    message: str


def _status_value(status) -> str:
    return getattr(status, "value", status)


def period_drift_hours(local_end: Optional[datetime], provider_end: Optional[datetime]) -> Optional[float]:
    """Absolute difference in hours, or None when either side is missing."""
    local_end = as_utc(local_end)
    provider_end = as_utc(provider_end)
    if local_end is None or provider_end is None:
        return None
    return abs((local_end - provider_end).total_seconds()) / 3600


def detect(
    local: Subscription,
    snapshot: ProviderSnapshot,
    tolerance_hours: float = DEFAULT_TOLERANCE_HOURS,
) -> list[Discrepancy]:
    """
    Compare a local record with the provider's view.

    - status: any difference is flagged
    - plan: flagged when the provider reports a price and it differs
    - period end: flagged when the drift is strictly greater than ``tolerance_hours``;
      a local record with no period end while the provider has one is also drift
    """
    issues: list[Discrepancy] = []

    local_status = _status_value(local.status)
    provider_status = _status_value(snapshot.status)
    if local_status != provider_status:
        issues.append(
            Discrepancy(
                DiscrepancyKind.STATUS_MISMATCH,
                f"Status mismatch: DB={local_status}, Stripe={provider_status}",
            )
        )

    if snapshot.current_price_id and local.plan_id != snapshot.current_price_id:
        issues.append(
            Discrepancy(
                DiscrepancyKind.PLAN_MISMATCH,
                f"Price mismatch: DB={local.plan_id}, Stripe={snapshot.current_price_id}",
            )
        )

    if snapshot.current_period_end is not None:
        drift = period_drift_hours(local.current_period_end, snapshot.current_period_end)
        if drift is None:
            issues.append(
                Discrepancy(
                    DiscrepancyKind.PERIOD_END_DRIFT,
                    f"Period end drift: DB=None, Stripe={as_utc(snapshot.current_period_end).isoformat()}",
                )
            )
        elif drift > tolerance_hours:
            issues.append(
                Discrepancy(
                    DiscrepancyKind.PERIOD_END_DRIFT,
                    f"Period end drift: DB={as_utc(local.current_period_end).isoformat()}, "
                    f"Stripe={as_utc(snapshot.current_period_end).isoformat()} "
                    f"({drift:.1f}h difference)",
                )
            )

    return issues


__all__ = [
    "DiscrepancyKind",
    "Discrepancy",
    "detect",
    "period_drift_hours",
    "DEFAULT_TOLERANCE_HOURS",
]
