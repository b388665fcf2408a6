"""Records exchanged between the meta-planning components.

Plans are plain mappings and are treated as immutable values: components
read the small typed surface below and return new mappings when they need
a changed plan.

  domain                 crawl domain (``example.com``)
  proposedHubs           [{url, kind?, priority?, confidence?, reason?, source?}]
  seedQueue              [url | {url, priority?}]
  costEstimates          {estimatedRequests? | totalRequests?, ...}
  schedulingConstraints  {maxRequestsPerMinute?, concurrency?, maxPages?}
  rationale              [str]
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlsplit


Plan = Dict[str, Any]


# ── Plan surface helpers ──────────────────────────────────────

def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def as_float(v: Any, default: float = 0.0) -> float:
    """Lenient numeric coercion; junk and NaN become ``default``."""
    if v is None:
        return default
    try:
        f = float(v)
    except (TypeError, ValueError):
        return default
    if math.isnan(f) or math.isinf(f):
        return default
    return f


def url_of(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry.strip() or None
    if isinstance(entry, Mapping):
        u = entry.get("url")
        if isinstance(u, str) and u.strip():
            return u.strip()
    return None


def host_of(url: str) -> str:
    parts = urlsplit(url if "//" in url else "//" + url)
    host = (parts.hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def normalize_domain(domain: Any) -> str:
    if not isinstance(domain, str) or not domain.strip():
        return ""
    return host_of(domain.strip())


def on_domain(url: str, domain: str) -> bool:
    """True when ``url`` belongs to ``domain`` or one of its subdomains."""
    if not domain:
        return True
    host = host_of(url)
    return host == domain or host.endswith("." + domain)


def plan_domain(plan: Any, fallback: Any = None) -> str:
    if isinstance(plan, Mapping):
        d = normalize_domain(plan.get("domain"))
        if d:
            return d
    return normalize_domain(fallback)


def plan_hubs(plan: Any) -> List[Any]:
    hubs = plan.get("proposedHubs") if isinstance(plan, Mapping) else None
    return list(hubs) if isinstance(hubs, list) else []


def plan_seeds(plan: Any) -> List[Any]:
    seeds = plan.get("seedQueue") if isinstance(plan, Mapping) else None
    return list(seeds) if isinstance(seeds, list) else []


def plan_label(plan: Any, default: str = "plan") -> str:
    if isinstance(plan, Mapping):
        for key in ("id", "source", "sessionId"):
            v = plan.get(key)
            if isinstance(v, str) and v:
                return v
    return default


# ── Risk / validation ─────────────────────────────────────────

@dataclass(frozen=True)
class RiskMetrics:
    hub_count: int = 0
    seed_count: int = 0
    projected_requests: float = 0.0
    request_rate: float = 0.0          # requests per minute
    concurrency: float = 0.0
    domain_error_rate: float = 0.0
    duplicate_ratio: float = 0.0
    offdomain_ratio: float = 0.0
    low_confidence_ratio: float = 0.0
    volume_risk: float = 0.0
    rate_risk: float = 0.0
    error_risk: float = 0.0
    risk_score: float = 0.0
    safety_score: float = 1.0
    risk_level: str = "LOW"            # LOW|GUARDED|ELEVATED|CRITICAL

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "RiskMetrics":
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


@dataclass
class ValidationResult:
    valid: bool
    sanitized_blueprint: Optional[Plan]
    metrics: RiskMetrics = field(default_factory=RiskMetrics)
    issues: List[str] = field(default_factory=list)
    policy: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "sanitized_blueprint": self.sanitized_blueprint,
            "metrics": self.metrics.to_dict(),
            "issues": list(self.issues),
            "policy": dict(self.policy),
        }


# ── Scores ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Score:
    total_score: float
    metrics: Dict[str, float] = field(default_factory=dict)
    confidence: Optional[float] = None

    def metric(self, name: str, default: float = 0.0) -> float:
        return as_float(self.metrics.get(name), default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_score": self.total_score,
            "metrics": dict(self.metrics),
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Score":
        """Accepts snake_case or camelCase (``totalScore``) payloads."""
        total = d.get("total_score", d.get("totalScore", 0.0))
        conf = d.get("confidence")
        return cls(
            total_score=clamp01(as_float(total)),
            metrics={k: clamp01(as_float(v)) for k, v in dict(d.get("metrics") or {}).items()},
            confidence=None if conf is None else clamp01(as_float(conf)),
        )


@dataclass(frozen=True)
class ScoredPlan:
    plan: Plan
    score: Score

    def to_dict(self) -> Dict[str, Any]:
        return {"plan": self.plan, "score": self.score.to_dict()}


# ── Decisions ─────────────────────────────────────────────────

class OutcomeKind(str, Enum):
    REPLAN = "replan"
    ACCEPT_ALTERNATIVE = "accept_alternative"
    SEEK_HUMAN_CONFIRMATION = "seek_human_confirmation"
    ACCEPT_MICROPROLOG = "accept_microprolog"
    FUSE = "fuse"


@dataclass(frozen=True)
class FusionResult:
    plan: Plan
    confidence: Optional[float] = None
    safety_score: float = 1.0
    contributors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan,
            "confidence": self.confidence,
            "safety_score": self.safety_score,
            "contributors": list(self.contributors),
        }


@dataclass
class Decision:
    outcome: OutcomeKind
    rationale: List[str] = field(default_factory=list)
    confidence: float = 0.0
    chosen_plan: Optional[Plan] = None
    fused_plan: Optional[FusionResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "rationale": list(self.rationale),
            "confidence": self.confidence,
            "chosen_plan": self.chosen_plan,
            "fused_plan": self.fused_plan.to_dict() if self.fused_plan else None,
        }


# ── Context ───────────────────────────────────────────────────

@dataclass(frozen=True)
class MetaContext:
    """Read-only input bag assembled by the caller."""
    options: Dict[str, Any] = field(default_factory=dict)
    history: Dict[str, Any] = field(default_factory=dict)
    telemetry: Dict[str, Any] = field(default_factory=dict)

    @property
    def domain(self) -> str:
        return normalize_domain(self.options.get("domain"))

    @property
    def policies(self) -> Dict[str, Any]:
        p = self.options.get("policies")
        return dict(p) if isinstance(p, Mapping) else {}

    def with_history(self, history: Mapping[str, Any]) -> "MetaContext":
        return replace(self, history=dict(history))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "options": dict(self.options),
            "history": dict(self.history),
            "telemetry": dict(self.telemetry),
        }

    @classmethod
    def from_dict(cls, d: Any) -> "MetaContext":
        """Build from a plain dict; a top-level ``policies`` key is folded
        into ``options``."""
        if isinstance(d, MetaContext):
            return d
        if not isinstance(d, Mapping):
            return cls()
        options = dict(d.get("options") or {}) if isinstance(d.get("options"), Mapping) else {}
        if isinstance(d.get("policies"), Mapping) and "policies" not in options:
            options["policies"] = dict(d["policies"])
        history = d.get("history")
        telemetry = d.get("telemetry")
        return cls(
            options=options,
            history=dict(history) if isinstance(history, Mapping) else {},
            telemetry=dict(telemetry) if isinstance(telemetry, Mapping) else {},
        )
