"""Meta-plan coordinator — one process() call per planning request.

Fixed order:
  1. Validate the blueprint; only its sanitized copy is used afterwards
  2. Score every alternative (sanitized blueprint inserted first)
  3. Score the microprolog plan when present and the capability is on
  4. Arbitrate (may fuse; always audits)
  5. Dry-run the chosen plan for observability (best-effort)

The coordinator owns no mutable state of its own; calls are independent.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from crawlplan.config import Settings

from .arbitrator import PlanArbitrator
from .decision_log import decision_logger_from_policy
from .effectiveness import EffectivenessTracker
from .errors import NothingToArbitrateError
from .evaluator import PlanEvaluator
from .fusion import PlanFusion
from .interfaces import Arbitrator, Evaluator, Simulator, Validator
from .policy import MetaPolicy, thresholds_from_policy
from .replay import ReplaySimulator
from .risk import RiskScorer
from .types import (
    Decision, MetaContext, Plan, Score, ScoredPlan, ValidationResult, plan_domain,
)
from .validator import PlanValidator

logger = logging.getLogger(__name__)


@dataclass
class MetaOutcome:
    validator_result: ValidationResult
    micro_score: Optional[Score]
    alternative_scores: List[ScoredPlan]
    decision: Decision
    replay: Any = None
    sanitized_blueprint: Optional[Plan] = None
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        replay = self.replay.to_dict() if hasattr(self.replay, "to_dict") else (self.replay or {})
        return {
            "validator_result": self.validator_result.to_dict(),
            "micro_score": self.micro_score.to_dict() if self.micro_score else None,
            "alternative_scores": [sp.to_dict() for sp in self.alternative_scores],
            "decision": self.decision.to_dict(),
            "replay": replay,
            "sanitized_blueprint": self.sanitized_blueprint,
            "notes": list(self.notes),
        }


class MetaPlanCoordinator:

    def __init__(
        self,
        validator: Optional[Validator] = None,
        evaluator: Optional[Evaluator] = None,
        arbitrator: Optional[Arbitrator] = None,
        simulator: Optional[Simulator] = None,
        tracker: Optional[EffectivenessTracker] = None,
        microprolog_enabled: Optional[bool] = None,
    ) -> None:
        self.tracker = tracker
        self.validator = validator or PlanValidator()
        self.evaluator = evaluator or PlanEvaluator(tracker=tracker)
        self.arbitrator = arbitrator or PlanArbitrator(fusion=PlanFusion())
        self.simulator = simulator or ReplaySimulator(tracker=tracker)
        self.microprolog_enabled = (
            Settings.MICROPROLOG_ENABLED if microprolog_enabled is None else bool(microprolog_enabled)
        )

    def process(
        self,
        *,
        blueprint: Optional[Plan],
        context: Any = None,
        microprolog_plan: Optional[Plan] = None,
        alternative_plans: Optional[Sequence[Plan]] = None,
    ) -> MetaOutcome:
        alternatives = list(alternative_plans or [])
        if blueprint is None and not alternatives:
            raise NothingToArbitrateError("process() needs a blueprint or at least one alternative plan")

        ctx = MetaContext.from_dict(context)
        notes: List[str] = []
        if microprolog_plan is not None and not self.microprolog_enabled:
            logger.debug("microprolog plan ignored: capability disabled")
            notes.append("microprolog_disabled")
            microprolog_plan = None

        domain = plan_domain(blueprint, ctx.domain)
        if not ctx.history and self.tracker is not None and domain:
            ctx = ctx.with_history(self._tracked_history(domain, notes))

        # 1) validate
        vr = self.validator.validate(blueprint, ctx)
        sanitized = vr.sanitized_blueprint

        # 2) score candidates; the raw blueprint never runs, only its sanitized copy
        candidates = [p for p in alternatives if not _is_blueprint(p, blueprint)]
        if vr.valid and sanitized is not None:
            candidates.insert(0, sanitized)

        options = dict(ctx.options)
        if domain:
            options.setdefault("domain", domain)
        alt_scores: List[ScoredPlan] = []
        for plan in candidates:
            metrics = vr.metrics if plan is sanitized else None
            alt_scores.append(ScoredPlan(plan=plan, score=self.evaluator.score(
                plan,
                validator_metrics=metrics,
                history=ctx.history,
                telemetry=ctx.telemetry,
                options=options,
            )))

        # 3) microprolog
        micro_score: Optional[Score] = None
        if microprolog_plan is not None:
            micro_score = self.evaluator.score(
                microprolog_plan,
                history=ctx.history,
                telemetry=ctx.telemetry,
                options=options,
            )

        # 4) arbitrate
        decision = self.arbitrator.decide(
            microprolog_plan=microprolog_plan,
            alternative_plans=candidates,
            micro_score=micro_score,
            alt_scores=alt_scores,
            validator_result=vr,
            context=ctx,
        )

        # 5) dry-run
        replay = self._replay(domain, decision.chosen_plan, notes)

        return MetaOutcome(
            validator_result=vr,
            micro_score=micro_score,
            alternative_scores=alt_scores,
            decision=decision,
            replay=replay,
            sanitized_blueprint=sanitized,
            notes=notes,
        )

    def _replay(self, domain: str, plan: Optional[Plan], notes: List[str]) -> Any:
        try:
            return self.simulator.simulate(domain=domain, blueprint=plan)
        except Exception as e:
            logger.warning("replay simulation failed for %s: %r", domain or "?", e)
            notes.append("replay_failed")
            return {}

    def _tracked_history(self, domain: str, notes: List[str]) -> Dict[str, Any]:
        try:
            return self.tracker.history_for(domain)
        except Exception as e:
            logger.warning("tracked history unavailable for %s: %r", domain, e)
            notes.append("history_unavailable")
            return {}


def _is_blueprint(plan: Any, blueprint: Any) -> bool:
    return blueprint is not None and (plan is blueprint or plan == blueprint)


def build_coordinator(
    policy: Optional[Mapping[str, Any]] = None,
    tracker: Optional[EffectivenessTracker] = None,
) -> MetaPlanCoordinator:
    """Wire a full coordinator from a policy dict (see ``load_policy``)."""
    policy = dict(policy or {})
    typed = MetaPolicy.from_dict(policy)
    scorer = RiskScorer(typed.risk)
    if tracker is None:
        tracker = EffectivenessTracker(max_samples=typed.tracker.get("max_samples"))
    arbitrator = PlanArbitrator(
        thresholds=thresholds_from_policy(policy),
        fusion=PlanFusion(scorer=scorer),
        decision_logger=decision_logger_from_policy(typed.decision_log),
    )
    enabled = typed.microprolog.get("enabled")
    return MetaPlanCoordinator(
        validator=PlanValidator(policy=typed.safety, scorer=scorer),
        evaluator=PlanEvaluator(weights=typed.evaluator, scorer=scorer, tracker=tracker),
        arbitrator=arbitrator,
        simulator=ReplaySimulator(tracker=tracker, calibration=typed.risk),
        tracker=tracker,
        microprolog_enabled=Settings.MICROPROLOG_ENABLED or bool(enabled),
    )
