"""Replay Simulator — dry-run estimate of the chosen plan.

Estimates what running a plan would look like (request volume, duration
under its rate limit, expected errors and articles) without fetching
anything. Attached to the process() result for observability only.

``simulate`` never raises: a failing step is recorded as such and the
estimate is returned partially filled.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from crawlplan.utils.stable import stable_hash

from .effectiveness import EffectivenessTracker
from .interfaces import Simulator
from .policy import RiskCalibration
from .risk import DEFAULT_CONCURRENCY, DEFAULT_REQUEST_RATE, domain_error_rate
from .types import Plan, as_float, clamp01, plan_domain, plan_hubs, plan_seeds

logger = logging.getLogger(__name__)


DEFAULT_ARTICLE_YIELD = 0.3
DEFAULT_LATENCY_MS = 800.0


@dataclass
class ReplayStep:
    step_name: str
    value: Any
    ok: bool = True
    detail: str = ""


@dataclass
class ReplayEstimate:
    replay_id: str
    domain: str
    steps: List[ReplayStep] = field(default_factory=list)
    planned_requests: float = 0.0
    expected_duration_s: float = 0.0
    expected_errors: float = 0.0
    expected_articles: float = 0.0
    rate_headroom: float = 1.0
    complete: bool = True

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["steps"] = [asdict(s) for s in self.steps]
        return d


class ReplaySimulator(Simulator):

    def __init__(
        self,
        tracker: Optional[EffectivenessTracker] = None,
        calibration: Optional[RiskCalibration] = None,
        latency_ms: float = DEFAULT_LATENCY_MS,
    ) -> None:
        self.tracker = tracker
        self.calibration = calibration or RiskCalibration()
        self.latency_ms = latency_ms

    def simulate(self, *, domain: str = "", blueprint: Optional[Plan] = None) -> ReplayEstimate:
        dom = plan_domain(blueprint, domain)
        est = ReplayEstimate(
            replay_id=stable_hash({"domain": dom, "plan": blueprint})[:16],
            domain=dom,
        )
        if not isinstance(blueprint, Mapping):
            est.steps.append(ReplayStep("plan_present", None, ok=False, detail="no plan to simulate"))
            est.complete = False
            return est

        history = self._history(dom, est)
        for name, fn in (
            ("planned_requests", self._planned_requests),
            ("expected_duration_s", self._duration),
            ("expected_errors", self._errors),
            ("expected_articles", self._articles),
            ("rate_headroom", self._headroom),
        ):
            try:
                value = fn(blueprint, est, history)
            except Exception as e:
                logger.warning("replay step %s failed: %r", name, e)
                est.steps.append(ReplayStep(name, None, ok=False, detail=type(e).__name__))
                est.complete = False
                continue
            setattr(est, name, value)
            est.steps.append(ReplayStep(name, value))
        return est

    def _history(self, domain: str, est: ReplayEstimate) -> Dict[str, Any]:
        if self.tracker is None or not domain:
            return {}
        try:
            return self.tracker.history_for(domain)
        except Exception as e:
            logger.warning("replay history lookup failed: %r", e)
            est.steps.append(ReplayStep("history", None, ok=False, detail=type(e).__name__))
            return {}

    def _planned_requests(self, plan: Plan, est: ReplayEstimate, history: Mapping[str, Any]) -> float:
        costs = plan.get("costEstimates")
        if isinstance(costs, Mapping):
            for key in ("estimatedRequests", "totalRequests"):
                v = as_float(costs.get(key), -1.0)
                if v >= 0:
                    return v
        return float(len(plan_hubs(plan)) * self.calibration.requests_per_hub + len(plan_seeds(plan)))

    def _duration(self, plan: Plan, est: ReplayEstimate, history: Mapping[str, Any]) -> float:
        c = _constraints(plan)
        rate = max(1e-6, as_float(c.get("maxRequestsPerMinute"), DEFAULT_REQUEST_RATE))
        concurrency = max(1.0, as_float(c.get("concurrency"), DEFAULT_CONCURRENCY))
        rate_bound = est.planned_requests / rate * 60.0
        latency_bound = est.planned_requests * (self.latency_ms / 1000.0) / concurrency
        return round(max(rate_bound, latency_bound), 2)

    def _errors(self, plan: Plan, est: ReplayEstimate, history: Mapping[str, Any]) -> float:
        return round(est.planned_requests * domain_error_rate(history), 2)

    def _articles(self, plan: Plan, est: ReplayEstimate, history: Mapping[str, Any]) -> float:
        yield_ = clamp01(as_float(history.get("article_yield"), DEFAULT_ARTICLE_YIELD))
        return round((est.planned_requests - est.expected_errors) * yield_, 2)

    def _headroom(self, plan: Plan, est: ReplayEstimate, history: Mapping[str, Any]) -> float:
        rate = as_float(_constraints(plan).get("maxRequestsPerMinute"), DEFAULT_REQUEST_RATE)
        return round(clamp01(1.0 - rate / self.calibration.reference_rate), 4)


def _constraints(plan: Plan) -> Mapping[str, Any]:
    c = plan.get("schedulingConstraints")
    return c if isinstance(c, Mapping) else {}
