"""Single-method collaborator interfaces injected into the coordinator.

Concrete components subclass these; tests substitute fakes.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from .types import (
    Decision, FusionResult, MetaContext, Plan, Score, ScoredPlan, ValidationResult,
)


class Validator:
    def validate(self, blueprint: Any, context: MetaContext) -> ValidationResult:
        raise NotImplementedError


class Evaluator:
    def score(
        self,
        plan: Any,
        *,
        validator_metrics: Any = None,
        history: Optional[Dict[str, Any]] = None,
        telemetry: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> Score:
        raise NotImplementedError


class Fusion:
    def fuse(
        self,
        *,
        microprolog_plan: Optional[Plan],
        alternative_plans: Sequence[Plan],
        validator_result: ValidationResult,
        context: MetaContext,
        floor: float,
    ) -> Optional[FusionResult]:
        raise NotImplementedError


class Arbitrator:
    def decide(
        self,
        *,
        microprolog_plan: Optional[Plan],
        alternative_plans: Sequence[Plan],
        micro_score: Optional[Score],
        alt_scores: Sequence[ScoredPlan],
        validator_result: ValidationResult,
        context: MetaContext,
    ) -> Decision:
        raise NotImplementedError


class DecisionLogger:
    def log(self, entry: Any) -> None:
        raise NotImplementedError


class Simulator:
    def simulate(self, *, domain: str, blueprint: Optional[Plan]) -> Any:
        raise NotImplementedError
