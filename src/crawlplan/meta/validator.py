"""Plan validation: structural completeness + safety policy.

``validate`` never raises. Every violation lands in ``issues`` and makes the
result invalid; the sanitized blueprint is a deep copy with unsafe
fields clipped and is the only blueprint variant downstream may execute.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from .interfaces import Validator
from .policy import SafetyPolicy
from .risk import RiskScorer
from .types import (
    MetaContext, Plan, RiskMetrics, ValidationResult,
    as_float, normalize_domain, on_domain, plan_domain, plan_hubs, plan_seeds, url_of,
)

logger = logging.getLogger(__name__)


class PlanValidator(Validator):

    def __init__(
        self,
        policy: Optional[SafetyPolicy] = None,
        scorer: Optional[RiskScorer] = None,
    ) -> None:
        self.policy = policy or SafetyPolicy()
        self.scorer = scorer or RiskScorer()

    def validate(self, blueprint: Any, context: Any) -> ValidationResult:
        ctx = MetaContext.from_dict(context)
        try:
            return self._validate(blueprint, ctx)
        except Exception as e:
            logger.warning("plan validation failed internally: %r", e)
            return ValidationResult(
                valid=False,
                sanitized_blueprint=None,
                issues=[f"validator_error:{type(e).__name__}"],
            )

    def resolve_policy(self, ctx: MetaContext) -> Tuple[SafetyPolicy, List[str]]:
        """Instance policy with per-call overrides from ``options.policies``."""
        overrides = ctx.policies
        if not overrides:
            return self.policy, []
        try:
            return self.policy.merged(overrides), []
        except ValidationError as e:
            logger.warning("ignoring invalid policy overrides: %s", e.errors()[:1])
            return self.policy, ["policy_invalid"]

    def _validate(self, blueprint: Any, ctx: MetaContext) -> ValidationResult:
        policy, issues = self.resolve_policy(ctx)

        if not isinstance(blueprint, Mapping):
            issues.append("blueprint_not_mapping")
            return ValidationResult(
                valid=False, sanitized_blueprint=None,
                metrics=RiskMetrics(), issues=issues, policy=policy.model_dump(),
            )

        domain = plan_domain(blueprint, ctx.domain)
        if not domain:
            issues.append("missing_domain")
        if blueprint.get("proposedHubs") is not None and not isinstance(blueprint.get("proposedHubs"), list):
            issues.append("proposed_hubs_not_list")
        if blueprint.get("seedQueue") is not None and not isinstance(blueprint.get("seedQueue"), list):
            issues.append("seed_queue_not_list")
        if not plan_hubs(blueprint) and not plan_seeds(blueprint):
            issues.append("empty_plan")

        metrics = self.scorer.score(blueprint, ctx.history, domain=domain)
        issues.extend(safety_issues(metrics, policy))

        sanitized = sanitize_blueprint(blueprint, domain, policy)
        valid = not issues
        if not valid:
            logger.debug("blueprint for %s rejected: %s", domain or "?", issues)

        return ValidationResult(
            valid=valid,
            sanitized_blueprint=sanitized,
            metrics=metrics,
            issues=issues,
            policy=policy.model_dump(),
        )


def safety_issues(m: RiskMetrics, policy: SafetyPolicy) -> List[str]:
    checks = [
        ("hub_count", m.hub_count, policy.max_hubs),
        ("seed_count", m.seed_count, policy.max_seeds),
        ("projected_requests", m.projected_requests, policy.max_projected_requests),
        ("request_rate", m.request_rate, policy.max_request_rate),
        ("concurrency", m.concurrency, policy.max_concurrency),
        ("domain_error_rate", m.domain_error_rate, policy.max_error_rate),
        ("offdomain_ratio", m.offdomain_ratio, policy.max_offdomain_ratio),
        ("risk_score", m.risk_score, policy.max_risk_score),
    ]
    return [f"{name}_exceeds:{value}>{limit}" for name, value, limit in checks if value > limit]


def element_rank(entry: Any) -> Tuple[float, float]:
    """Ranking key for hub/seed elements: (confidence, priority), higher first."""
    if isinstance(entry, Mapping):
        return as_float(entry.get("confidence"), 0.5), as_float(entry.get("priority"), 0.0)
    return 0.5, 0.0


def keep_top(entries: List[Any], limit: int) -> List[Any]:
    """Keep the ``limit`` best-ranked entries, preserving original order."""
    if len(entries) <= limit:
        return list(entries)
    order = sorted(
        range(len(entries)),
        key=lambda i: (-element_rank(entries[i])[0], -element_rank(entries[i])[1], i),
    )
    kept = sorted(order[:max(0, limit)])
    return [entries[i] for i in kept]


def filter_elements(entries: List[Any], domain: str, seen: Optional[set] = None) -> Tuple[List[Any], int]:
    """Drop malformed, duplicate and off-domain elements. Returns (kept, dropped)."""
    seen = set() if seen is None else seen
    kept: List[Any] = []
    dropped = 0
    for e in entries:
        u = url_of(e)
        if not u or u in seen or not on_domain(u, domain):
            dropped += 1
            continue
        seen.add(u)
        kept.append(e)
    return kept, dropped


def clamp_constraints(constraints: Any, policy: SafetyPolicy) -> Tuple[Dict[str, Any], List[str]]:
    out = dict(constraints) if isinstance(constraints, Mapping) else {}
    notes: List[str] = []
    limits = {
        "concurrency": policy.max_concurrency,
        "maxRequestsPerMinute": policy.max_request_rate,
    }
    for key, limit in limits.items():
        if key not in out:
            continue
        v = as_float(out[key], -1.0)
        if v < 0 or v > limit:
            out[key] = limit
            notes.append(f"sanitized:{key}_clamped={limit}")
    return out, notes


def sanitize_blueprint(blueprint: Mapping[str, Any], domain: str, policy: SafetyPolicy) -> Plan:
    out: Plan = copy.deepcopy(dict(blueprint))
    notes: List[str] = []

    if domain and not normalize_domain(out.get("domain")):
        out["domain"] = domain
        notes.append("sanitized:domain_from_context")

    seen: set = set()
    hubs, dropped_hubs = filter_elements(plan_hubs(out), domain, seen)
    if dropped_hubs:
        notes.append(f"sanitized:dropped_hubs={dropped_hubs}")
    if len(hubs) > policy.max_hubs:
        notes.append(f"sanitized:hubs_clipped={len(hubs)}->{policy.max_hubs}")
        hubs = keep_top(hubs, policy.max_hubs)

    seeds, dropped_seeds = filter_elements(plan_seeds(out), domain, seen)
    if dropped_seeds:
        notes.append(f"sanitized:dropped_seeds={dropped_seeds}")
    if len(seeds) > policy.max_seeds:
        notes.append(f"sanitized:seeds_clipped={len(seeds)}->{policy.max_seeds}")
        seeds = seeds[:policy.max_seeds]

    out["proposedHubs"] = hubs
    out["seedQueue"] = seeds

    if "schedulingConstraints" in out:
        out["schedulingConstraints"], clamp_notes = clamp_constraints(out["schedulingConstraints"], policy)
        notes.extend(clamp_notes)

    if notes:
        rationale = out.get("rationale")
        out["rationale"] = (list(rationale) if isinstance(rationale, list) else []) + notes
    return out
