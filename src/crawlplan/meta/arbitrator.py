"""Plan Arbitrator — which candidate plan actually runs.

Deterministic rules, evaluated in order, first match wins:
1. Validator rejected the blueprint      → replan (stopgap candidate only)
2. No microprolog plan                    → accept first alternative
3. Microprolog plan but no score          → seek human confirmation
4. Microprolog score clears all thresholds → accept microprolog
5. Best alternative clears accept_score   → accept that alternative
6. Microprolog near threshold or low confidence → try safety-first fusion
7. Fallback                               → first alternative, else microprolog

Every exit appends a rationale tag and writes an audit entry. The audit
sink is best-effort: its failures are logged and never change the decision.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from crawlplan.utils.stable import plan_fingerprint

from .decision_log import DecisionLogEntry, NullDecisionLogger
from .interfaces import Arbitrator, DecisionLogger, Fusion
from .types import (
    Decision, MetaContext, OutcomeKind, Plan, Score, ScoredPlan, ValidationResult, plan_label,
)

logger = logging.getLogger(__name__)


DEFAULT_MICRO_CONFIDENCE = 0.6
DEFAULT_ALT_CONFIDENCE = 0.6
DEFAULT_FUSION_CONFIDENCE = 0.55
FALLBACK_CONFIDENCE = 0.5


class Rationale:
    VALIDATOR_REJECT = "validator_reject"
    MICROPROLOG_ABSENT = "microprolog_absent"
    MICROPROLOG_UNSCORED = "microprolog_unscored"
    MICROPROLOG_PASS = "microprolog_threshold_pass"
    MICROPROLOG_BELOW = "microprolog_below_threshold"
    ALTERNATIVE_PASS = "alternative_threshold_pass"
    FUSION_APPLIED = "fusion_applied"
    FUSION_UNAVAILABLE = "fusion_unavailable"
    FUSION_ERROR = "fusion_error"
    FALLBACK = "fallback_alternative"


@dataclass(frozen=True)
class ArbitrationThresholds:
    """Inclusive (>=) decision thresholds. Immutable; build once, pass in."""
    accept_score: float = 0.7
    explainability: float = 0.6
    precision: float = 0.6
    fuse_lower: float = 0.5
    confidence_min: float = 0.5
    microprolog_floor: float = 0.2

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ArbitrationThresholds":
        return cls(**{k: float(v) for k, v in d.items() if k in cls.__dataclass_fields__})


DEFAULT_THRESHOLDS = ArbitrationThresholds()


class PlanArbitrator(Arbitrator):

    def __init__(
        self,
        thresholds: ArbitrationThresholds = DEFAULT_THRESHOLDS,
        fusion: Optional[Fusion] = None,
        decision_logger: Optional[DecisionLogger] = None,
    ) -> None:
        self.thresholds = thresholds
        self.fusion = fusion
        self.decision_logger = decision_logger or NullDecisionLogger()

    def decide(
        self,
        *,
        microprolog_plan: Optional[Plan],
        alternative_plans: Sequence[Plan] = (),
        micro_score: Optional[Score] = None,
        alt_scores: Sequence[ScoredPlan] = (),
        validator_result: ValidationResult,
        context: Any = None,
    ) -> Decision:
        ctx = MetaContext.from_dict(context)
        t = self.thresholds
        alternatives = list(alternative_plans or [])
        scored = list(alt_scores or [])
        first_alt = alternatives[0] if alternatives else None
        stopgap = first_alt if first_alt is not None else microprolog_plan
        rationale: List[str] = []
        confidence = _initial_confidence(micro_score, scored)

        # Rule 1: validator rejection wins over everything
        if not validator_result.valid:
            rationale.append(Rationale.VALIDATOR_REJECT)
            return self._finish(Decision(
                outcome=OutcomeKind.REPLAN, rationale=rationale,
                confidence=confidence, chosen_plan=stopgap,
            ), ctx, validator_result)

        # Rule 2: nothing from the logic planner
        if microprolog_plan is None:
            rationale.append(Rationale.MICROPROLOG_ABSENT)
            return self._finish(Decision(
                outcome=OutcomeKind.ACCEPT_ALTERNATIVE, rationale=rationale,
                confidence=confidence, chosen_plan=first_alt,
            ), ctx, validator_result)

        # Rule 3: a plan we cannot judge goes to a human
        if micro_score is None:
            rationale.append(Rationale.MICROPROLOG_UNSCORED)
            return self._finish(Decision(
                outcome=OutcomeKind.SEEK_HUMAN_CONFIRMATION, rationale=rationale,
                confidence=confidence, chosen_plan=stopgap,
            ), ctx, validator_result)

        # Rule 4: microprolog clears every threshold
        if (
            micro_score.total_score >= t.accept_score
            and micro_score.metric("explainability") >= t.explainability
            and micro_score.metric("precision_proxy") >= t.precision
        ):
            rationale.append(Rationale.MICROPROLOG_PASS)
            return self._finish(Decision(
                outcome=OutcomeKind.ACCEPT_MICROPROLOG, rationale=rationale,
                confidence=max(confidence, _or(micro_score.confidence, DEFAULT_MICRO_CONFIDENCE)),
                chosen_plan=microprolog_plan,
            ), ctx, validator_result)
        rationale.append(Rationale.MICROPROLOG_BELOW)

        # Rule 5: best-scoring alternative (stable on ties)
        best = best_alternative(scored)
        if best is not None and best.score.total_score >= t.accept_score:
            rationale.append(Rationale.ALTERNATIVE_PASS)
            return self._finish(Decision(
                outcome=OutcomeKind.ACCEPT_ALTERNATIVE, rationale=rationale,
                confidence=max(confidence, _or(best.score.confidence, DEFAULT_ALT_CONFIDENCE)),
                chosen_plan=best.plan,
            ), ctx, validator_result)

        # Rule 6: safety-first fusion
        if micro_score.total_score >= t.fuse_lower or confidence < t.confidence_min:
            fused = None
            if self.fusion is None:
                rationale.append(Rationale.FUSION_UNAVAILABLE)
            else:
                try:
                    fused = self.fusion.fuse(
                        microprolog_plan=microprolog_plan,
                        alternative_plans=alternatives,
                        validator_result=validator_result,
                        context=ctx,
                        floor=t.microprolog_floor,
                    )
                except Exception as e:
                    logger.warning("plan fusion failed, falling back: %r", e)
                    rationale.append(Rationale.FUSION_ERROR)
                else:
                    if fused is None or fused.plan is None:
                        rationale.append(Rationale.FUSION_UNAVAILABLE)
            if fused is not None and fused.plan is not None:
                rationale.append(Rationale.FUSION_APPLIED)
                return self._finish(Decision(
                    outcome=OutcomeKind.FUSE, rationale=rationale,
                    confidence=max(confidence, _or(fused.confidence, DEFAULT_FUSION_CONFIDENCE)),
                    chosen_plan=fused.plan, fused_plan=fused,
                ), ctx, validator_result)

        # Rule 7: fallback
        rationale.append(Rationale.FALLBACK)
        return self._finish(Decision(
            outcome=OutcomeKind.ACCEPT_ALTERNATIVE, rationale=rationale,
            confidence=max(confidence, FALLBACK_CONFIDENCE), chosen_plan=stopgap,
        ), ctx, validator_result)

    def _finish(self, decision: Decision, ctx: MetaContext, vr: ValidationResult) -> Decision:
        logger.debug("arbitration %s via %s", decision.outcome.value, decision.rationale)
        try:
            self.decision_logger.log(DecisionLogEntry.from_decision(decision, {
                "domain": ctx.domain,
                "validator_valid": vr.valid,
                "validator_issues": list(vr.issues),
                "chosen": plan_label(decision.chosen_plan, "none") if decision.chosen_plan is not None else None,
                "chosen_fingerprint": plan_fingerprint(decision.chosen_plan) if decision.chosen_plan is not None else None,
                "thresholds": self.thresholds.to_dict(),
            }))
        except Exception as e:
            logger.warning("decision log write failed: %r", e)
        return decision


def best_alternative(scored: Sequence[ScoredPlan]) -> Optional[ScoredPlan]:
    """Highest total_score; earliest wins ties."""
    if not scored:
        return None
    return sorted(scored, key=lambda sp: sp.score.total_score, reverse=True)[0]


def _initial_confidence(micro_score: Optional[Score], scored: List[ScoredPlan]) -> float:
    if micro_score is not None:
        return _or(micro_score.confidence, 0.0)
    if scored:
        return _or(scored[0].score.confidence, 0.0)
    return 0.0


def _or(v: Optional[float], default: float) -> float:
    return default if v is None else float(v)
