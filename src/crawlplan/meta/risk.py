"""Plan risk scoring.

Pure and deterministic: the same plan and history always produce the same
RiskMetrics. No clock reads, no I/O.
"""
from __future__ import annotations

from typing import Any, List, Mapping, Optional

from .policy import RiskCalibration
from .types import (
    RiskMetrics, as_float, clamp01, on_domain, plan_domain, plan_hubs, plan_seeds, url_of,
)


# Composite weights: volume, rate, error, off-domain, duplicate
RISK_WEIGHTS = {
    "volume": 0.35,
    "rate": 0.20,
    "error": 0.25,
    "offdomain": 0.10,
    "duplicate": 0.10,
}

DEFAULT_REQUEST_RATE = 60.0
DEFAULT_CONCURRENCY = 1.0
LOW_CONFIDENCE = 0.3


def risk_level(risk_score: float) -> str:
    if risk_score >= 0.7:
        return "CRITICAL"
    if risk_score >= 0.4:
        return "ELEVATED"
    if risk_score >= 0.15:
        return "GUARDED"
    return "LOW"


def domain_error_rate(history: Optional[Mapping[str, Any]]) -> float:
    """Error rate from ``error_rate`` or ``failures / attempts``."""
    if not isinstance(history, Mapping):
        return 0.0
    if "error_rate" in history:
        return clamp01(as_float(history.get("error_rate")))
    attempts = as_float(history.get("attempts"))
    if attempts > 0:
        return clamp01(as_float(history.get("failures")) / attempts)
    return 0.0


class RiskScorer:
    """Plan attributes → RiskMetrics."""

    def __init__(self, calibration: Optional[RiskCalibration] = None) -> None:
        self.calibration = calibration or RiskCalibration()

    def score(
        self,
        plan: Any,
        history: Optional[Mapping[str, Any]] = None,
        *,
        domain: Any = None,
    ) -> RiskMetrics:
        cal = self.calibration
        dom = plan_domain(plan, domain)
        hubs = plan_hubs(plan)
        seeds = plan_seeds(plan)

        urls: List[str] = [u for u in (url_of(e) for e in hubs + seeds) if u]
        total_urls = len(urls)
        duplicate_ratio = (1.0 - len(set(urls)) / total_urls) if total_urls else 0.0
        offdomain = sum(1 for u in urls if not on_domain(u, dom))
        offdomain_ratio = offdomain / total_urls if total_urls else 0.0

        hub_conf = [as_float(h.get("confidence"), 0.5) for h in hubs if isinstance(h, Mapping)]
        low_conf_ratio = (
            sum(1 for c in hub_conf if c < LOW_CONFIDENCE) / len(hub_conf) if hub_conf else 0.0
        )

        projected = _projected_requests(plan, len(hubs), len(seeds), cal.requests_per_hub)
        constraints = plan.get("schedulingConstraints") if isinstance(plan, Mapping) else None
        constraints = constraints if isinstance(constraints, Mapping) else {}
        rate = as_float(constraints.get("maxRequestsPerMinute"), DEFAULT_REQUEST_RATE)
        concurrency = as_float(constraints.get("concurrency"), DEFAULT_CONCURRENCY)

        err_rate = domain_error_rate(history)

        volume_risk = clamp01(projected / cal.reference_requests)
        rate_risk = clamp01(rate / cal.reference_rate)
        error_risk = clamp01(2.0 * err_rate)

        risk = clamp01(
            RISK_WEIGHTS["volume"] * volume_risk
            + RISK_WEIGHTS["rate"] * rate_risk
            + RISK_WEIGHTS["error"] * error_risk
            + RISK_WEIGHTS["offdomain"] * offdomain_ratio
            + RISK_WEIGHTS["duplicate"] * duplicate_ratio
        )
        risk = round(risk, 4)

        return RiskMetrics(
            hub_count=len(hubs),
            seed_count=len(seeds),
            projected_requests=round(projected, 2),
            request_rate=round(rate, 2),
            concurrency=round(concurrency, 2),
            domain_error_rate=round(err_rate, 4),
            duplicate_ratio=round(duplicate_ratio, 4),
            offdomain_ratio=round(offdomain_ratio, 4),
            low_confidence_ratio=round(low_conf_ratio, 4),
            volume_risk=round(volume_risk, 4),
            rate_risk=round(rate_risk, 4),
            error_risk=round(error_risk, 4),
            risk_score=risk,
            safety_score=round(1.0 - risk, 4),
            risk_level=risk_level(risk),
        )


def _projected_requests(plan: Any, hub_count: int, seed_count: int, per_hub: float) -> float:
    costs = plan.get("costEstimates") if isinstance(plan, Mapping) else None
    if isinstance(costs, Mapping):
        for key in ("estimatedRequests", "totalRequests"):
            v = as_float(costs.get(key), -1.0)
            if v >= 0:
                return v
    return hub_count * per_hub + seed_count
