"""Safety-first plan fusion.

Keeps the validated, safety-relevant seed (the microprolog plan) and fills
the remaining hub/seed slots with the best elements from the alternatives.
Every addition is re-scored; an addition that pushes the plan's safety
score under ``floor`` is reverted. No viable seed → no fusion.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .interfaces import Fusion
from .policy import SafetyPolicy
from .risk import RiskScorer
from .types import (
    FusionResult, MetaContext, Plan, ValidationResult,
    as_float, clamp01, plan_domain, plan_hubs, plan_label, plan_seeds, url_of,
)
from .validator import clamp_constraints, element_rank, filter_elements

logger = logging.getLogger(__name__)


# Constraint keys where a smaller value is the conservative one
CONSERVATIVE_MIN_KEYS = ("concurrency", "maxRequestsPerMinute", "maxPages")

MAX_FUSION_CONFIDENCE = 0.9


class PlanFusion(Fusion):

    def __init__(self, scorer: Optional[RiskScorer] = None) -> None:
        self.scorer = scorer or RiskScorer()

    def fuse(
        self,
        *,
        microprolog_plan: Optional[Plan],
        alternative_plans: Sequence[Plan] = (),
        validator_result: ValidationResult,
        context: Any = None,
        floor: float = 0.2,
    ) -> Optional[FusionResult]:
        if not isinstance(microprolog_plan, Mapping):
            return None
        ctx = MetaContext.from_dict(context)
        policy = _policy_of(validator_result)
        baseline = validator_result.sanitized_blueprint if validator_result.valid else None
        domain = plan_domain(microprolog_plan, plan_domain(baseline, ctx.domain))

        fused = copy.deepcopy(dict(microprolog_plan))
        if domain:
            fused["domain"] = domain
        seen: set = set()
        hubs, _ = filter_elements(plan_hubs(fused), domain, seen)
        seeds, _ = filter_elements(plan_seeds(fused), domain, seen)
        fused["proposedHubs"] = hubs[:policy.max_hubs]
        fused["seedQueue"] = seeds[:policy.max_seeds]
        fused["schedulingConstraints"] = _conservative_constraints(
            fused.get("schedulingConstraints"),
            (baseline or {}).get("schedulingConstraints"),
            policy,
        )

        metrics = self.scorer.score(fused, ctx.history, domain=domain)
        if metrics.safety_score < floor:
            logger.debug("fusion seed below floor: safety=%.3f floor=%.3f", metrics.safety_score, floor)
            return None

        contributors: List[str] = []
        added = 0
        for label, key, entry in _ranked_candidates(alternative_plans, domain, seen):
            cap = policy.max_hubs if key == "proposedHubs" else policy.max_seeds
            if len(fused[key]) >= cap:
                continue
            fused[key].append(copy.deepcopy(entry))
            trial = self.scorer.score(fused, ctx.history, domain=domain)
            if trial.safety_score < floor:
                fused[key].pop()
                continue
            metrics = trial
            seen.add(url_of(entry))
            added += 1
            if label not in contributors:
                contributors.append(label)

        if not fused["proposedHubs"] and not fused["seedQueue"]:
            return None

        confidences = [element_rank(h)[0] for h in fused["proposedHubs"]] or [0.5]
        mean_conf = sum(clamp01(c) for c in confidences) / len(confidences)
        confidence = min(MAX_FUSION_CONFIDENCE, 0.5 * metrics.safety_score + 0.5 * mean_conf)

        rationale = fused.get("rationale")
        fused["rationale"] = (list(rationale) if isinstance(rationale, list) else []) + [
            f"fusion:seed={plan_label(microprolog_plan, 'microprolog')}"
            f",added={added},safety={metrics.safety_score:.3f}"
        ]
        fused["fusion"] = {
            "seed": plan_label(microprolog_plan, "microprolog"),
            "contributors": list(contributors),
            "added_elements": added,
            "floor": floor,
        }
        return FusionResult(
            plan=fused,
            confidence=round(confidence, 4),
            safety_score=metrics.safety_score,
            contributors=contributors,
        )


def _policy_of(vr: ValidationResult) -> SafetyPolicy:
    if vr.policy:
        return SafetyPolicy.model_validate(vr.policy)
    return SafetyPolicy()


def _conservative_constraints(seed: Any, baseline: Any, policy: SafetyPolicy) -> Dict[str, Any]:
    out = dict(seed) if isinstance(seed, Mapping) else {}
    base = baseline if isinstance(baseline, Mapping) else {}
    for key in CONSERVATIVE_MIN_KEYS:
        values = [as_float(d.get(key), -1.0) for d in (out, base) if key in d]
        values = [v for v in values if v >= 0]
        if values:
            out[key] = min(values)
    clamped, _ = clamp_constraints(out, policy)
    return clamped


def _ranked_candidates(
    alternatives: Sequence[Plan], domain: str, seen: set,
) -> List[Tuple[str, str, Any]]:
    """(label, plan key, element) for alternative elements, best first."""
    pool: List[Tuple[Tuple[float, float, int], str, str, Any]] = []
    order = 0
    for i, alt in enumerate(alternatives or []):
        label = plan_label(alt, f"alternative_{i}")
        for key, entries in (("proposedHubs", plan_hubs(alt)), ("seedQueue", plan_seeds(alt))):
            kept, _ = filter_elements(entries, domain, set(seen))
            for entry in kept:
                conf, prio = element_rank(entry)
                pool.append(((-conf, -prio, order), label, key, entry))
                order += 1
    pool.sort(key=lambda t: t[0])

    out: List[Tuple[str, str, Any]] = []
    taken: set = set()
    for _, label, key, entry in pool:
        u = url_of(entry)
        if u in taken:
            continue
        taken.add(u)
        out.append((label, key, entry))
    return out
