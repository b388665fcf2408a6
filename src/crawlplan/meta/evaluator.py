"""Plan Evaluator — multi-signal scoring of candidate plans.

Three weighted signal families:
  1. Structural quality   (validator / risk metrics + plan shape)
  2. Historical effectiveness (per-domain feedback summary)
  3. Live telemetry       (error rate, budget and throttling flags)

Scoring is total and deterministic: no clock reads, junk inputs fall back
to neutral values, and thin or stale history lowers ``confidence`` instead
of failing.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Mapping, Optional

from .effectiveness import EffectivenessTracker
from .interfaces import Evaluator
from .policy import EvaluatorWeights
from .risk import RiskScorer
from .types import RiskMetrics, Score, as_float, clamp01, plan_hubs, plan_seeds

logger = logging.getLogger(__name__)


NEUTRAL_HISTORY = 0.5
NEUTRAL_TELEMETRY = 0.5
RECENCY_TAU_H = 168.0               # one week
HISTORY_VOLUME_K = 5.0
MAX_CONFIDENCE = 0.95


class PlanEvaluator(Evaluator):
    """Scores any candidate plan; optionally reports scores to a tracker."""

    def __init__(
        self,
        weights: Optional[EvaluatorWeights] = None,
        scorer: Optional[RiskScorer] = None,
        tracker: Optional[EffectivenessTracker] = None,
    ) -> None:
        self.weights = weights or EvaluatorWeights()
        self.scorer = scorer or RiskScorer()
        self.tracker = tracker

    def score(
        self,
        plan: Any,
        *,
        validator_metrics: Any = None,
        history: Optional[Mapping[str, Any]] = None,
        telemetry: Optional[Mapping[str, Any]] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> Score:
        history = history if isinstance(history, Mapping) else {}
        telemetry = telemetry if isinstance(telemetry, Mapping) else {}
        options = options if isinstance(options, Mapping) else {}

        metrics = _coerce_metrics(validator_metrics)
        if metrics is None:
            metrics = self.scorer.score(plan, history, domain=options.get("domain"))

        structural = self.structural_signals(plan, metrics)
        historical = historical_signal(history)
        live = telemetry_signal(telemetry)

        w = self.weights.normalized()
        total = clamp01(
            w["structural"] * structural["structural"]
            + w["historical"] * historical
            + w["telemetry"] * live
        )

        result = Score(
            total_score=round(total, 4),
            metrics={
                **{k: round(v, 4) for k, v in structural.items()},
                "historical": round(historical, 4),
                "telemetry": round(live, 4),
            },
            confidence=round(score_confidence(history, telemetry), 4),
        )

        if self.tracker is not None:
            try:
                self.tracker.observe_preview_score(result, plan, {"options": dict(options)})
            except Exception as e:
                logger.warning("preview score not recorded: %r", e)

        return result

    def structural_signals(self, plan: Any, m: RiskMetrics) -> Dict[str, float]:
        hubs = [h for h in plan_hubs(plan) if isinstance(h, Mapping)]
        seed_count = len(plan_seeds(plan))

        safety = clamp01(m.safety_score)

        if hubs:
            mean_conf = sum(clamp01(as_float(h.get("confidence"), 0.5)) for h in hubs) / len(hubs)
        else:
            mean_conf = 0.5 if seed_count else 0.0
        precision = clamp01(mean_conf * (1.0 - m.duplicate_ratio) * (1.0 - m.offdomain_ratio))

        rationale = plan.get("rationale") if isinstance(plan, Mapping) else None
        rationale_presence = min(1.0, len(rationale) / 3.0) if isinstance(rationale, list) else 0.0
        if hubs:
            explained = sum(1 for h in hubs if h.get("reason") or h.get("source")) / len(hubs)
        else:
            explained = rationale_presence
        explainability = clamp01(0.5 * rationale_presence + 0.5 * explained)

        coverage = clamp01((len(hubs) + seed_count) / float(self.weights.coverage_target))

        structural = clamp01(
            0.35 * safety + 0.25 * precision + 0.20 * explainability + 0.20 * coverage
        )
        return {
            "explainability": explainability,
            "precision_proxy": precision,
            "safety": safety,
            "coverage": coverage,
            "structural": structural,
        }


def historical_signal(history: Mapping[str, Any]) -> float:
    """Blend of past success, article yield and preview scores."""
    has_exec = as_float(history.get("sample_count")) > 0
    has_preview = "avg_preview_score" in history
    if not has_exec and not has_preview:
        return NEUTRAL_HISTORY
    success = clamp01(as_float(history.get("success_rate"), NEUTRAL_HISTORY)) if has_exec else NEUTRAL_HISTORY
    yield_ = clamp01(as_float(history.get("article_yield"), NEUTRAL_HISTORY))
    preview = clamp01(as_float(history.get("avg_preview_score"), NEUTRAL_HISTORY))
    return clamp01(0.5 * success + 0.3 * yield_ + 0.2 * preview)


def telemetry_signal(telemetry: Mapping[str, Any]) -> float:
    if not telemetry:
        return NEUTRAL_TELEMETRY
    health = 1.0 - clamp01(as_float(telemetry.get("error_rate")))
    if telemetry.get("budget_exceeded") or telemetry.get("budgetExceeded"):
        health -= 0.2
    if telemetry.get("throttled"):
        health -= 0.1
    return clamp01(health)


def score_confidence(history: Mapping[str, Any], telemetry: Mapping[str, Any]) -> float:
    """Monotone in history volume and recency; sparse history stays low."""
    n = max(0.0, as_float(history.get("sample_count")))
    volume = n / (n + HISTORY_VOLUME_K)
    if n <= 0:
        recency = 0.0
    elif "last_run_age_hours" in history and history.get("last_run_age_hours") is not None:
        age_h = max(0.0, as_float(history.get("last_run_age_hours")))
        recency = math.exp(-age_h / RECENCY_TAU_H)
    else:
        recency = 0.5
    telemetry_present = 1.0 if telemetry else 0.0
    return clamp01(min(MAX_CONFIDENCE, 0.3 + 0.55 * volume * recency + 0.1 * telemetry_present))


def _coerce_metrics(v: Any) -> Optional[RiskMetrics]:
    if isinstance(v, RiskMetrics):
        return v
    if isinstance(v, Mapping) and v:
        return RiskMetrics.from_dict(v)
    return None
