"""Meta-planning policy: YAML loading, defaults, typed sections.

A policy file is deep-merged over ``POLICY_DEFAULTS``; the typed sections
(safety, risk calibration, evaluator weights) are pydantic models so
per-call overrides from ``context.options.policies`` get the same checks.
Overrides may use snake_case or camelCase keys (``max_hubs`` / ``maxHubs``).
"""
from __future__ import annotations

import copy
import json
import os
from typing import Any, Dict, List, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .arbitrator import ArbitrationThresholds
from .errors import PolicyError


POLICY_DEFAULTS: Dict[str, Any] = {
    "policy_id": "default",
    "arbitration": {
        "accept_score": 0.7,
        "explainability": 0.6,
        "precision": 0.6,
        "fuse_lower": 0.5,
        "confidence_min": 0.5,
        "microprolog_floor": 0.2,
    },
    "safety": {
        "max_hubs": 200,
        "max_seeds": 500,
        "max_projected_requests": 20000,
        "max_request_rate": 600,
        "max_concurrency": 16,
        "max_error_rate": 0.5,
        "max_offdomain_ratio": 0.25,
        "max_risk_score": 0.8,
    },
    "risk": {
        "reference_requests": 5000,
        "reference_rate": 120,
        "requests_per_hub": 25,
    },
    "evaluator": {
        "structural": 0.5,
        "historical": 0.3,
        "telemetry": 0.2,
        "coverage_target": 50,
    },
    "microprolog": {"enabled": False},
    "tracker": {"max_samples": 5000},
    "decision_log": {"sink": "memory", "path": ".crawlplan_decisions.jsonl", "max_entries": 1000},
}


class _PolicySection(BaseModel):
    model_config = ConfigDict(
        extra="ignore", alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    def merged(self, overrides: Mapping[str, Any]):
        """New section with ``overrides`` applied (validated)."""
        fields = type(self).model_fields
        by_alias = {to_camel(name): name for name in fields}
        data = self.model_dump()
        for key, value in dict(overrides or {}).items():
            name = key if key in fields else by_alias.get(key)
            if name:
                data[name] = value
        return type(self).model_validate(data)


class SafetyPolicy(_PolicySection):
    max_hubs: int = Field(200, ge=0)
    max_seeds: int = Field(500, ge=0)
    max_projected_requests: float = Field(20000, ge=0)
    max_request_rate: float = Field(600, gt=0)
    max_concurrency: int = Field(16, ge=1)
    max_error_rate: float = Field(0.5, ge=0.0, le=1.0)
    max_offdomain_ratio: float = Field(0.25, ge=0.0, le=1.0)
    max_risk_score: float = Field(0.8, ge=0.0, le=1.0)


class RiskCalibration(_PolicySection):
    reference_requests: float = Field(5000, gt=0)
    reference_rate: float = Field(120, gt=0)
    requests_per_hub: float = Field(25, ge=0)


class EvaluatorWeights(_PolicySection):
    structural: float = Field(0.5, ge=0.0)
    historical: float = Field(0.3, ge=0.0)
    telemetry: float = Field(0.2, ge=0.0)
    coverage_target: int = Field(50, ge=1)

    def normalized(self) -> Dict[str, float]:
        total = self.structural + self.historical + self.telemetry
        if total <= 0:
            return {"structural": 1.0, "historical": 0.0, "telemetry": 0.0}
        return {
            "structural": self.structural / total,
            "historical": self.historical / total,
            "telemetry": self.telemetry / total,
        }


class MetaPolicy(BaseModel):
    policy_id: str = "default"
    arbitration: Dict[str, float] = Field(default_factory=dict)
    safety: SafetyPolicy = Field(default_factory=SafetyPolicy)
    risk: RiskCalibration = Field(default_factory=RiskCalibration)
    evaluator: EvaluatorWeights = Field(default_factory=EvaluatorWeights)
    microprolog: Dict[str, Any] = Field(default_factory=dict)
    tracker: Dict[str, Any] = Field(default_factory=dict)
    decision_log: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "MetaPolicy":
        try:
            return cls.model_validate(dict(d or {}))
        except ValidationError as e:
            raise PolicyError(str(e)) from e


def load_policy(path: str) -> Dict[str, Any]:
    """Load a policy from a YAML or JSON file.

    Missing file → a copy of the defaults. Missing fields fall back to
    defaults.
    """
    if not path or not os.path.exists(path):
        return copy.deepcopy(POLICY_DEFAULTS)

    with open(path, "r", encoding="utf-8") as f:
        raw = f.read()

    if path.endswith(".json"):
        data = json.loads(raw)
    else:
        data = yaml.safe_load(raw) or {}

    if not isinstance(data, dict):
        raise PolicyError(f"policy file {path!r} is not a mapping")
    return _merge_defaults(data, POLICY_DEFAULTS)


def _merge_defaults(data: Mapping[str, Any], defaults: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge data over defaults."""
    result = copy.deepcopy(dict(defaults))
    for key, value in data.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_defaults(value, result[key])
        else:
            result[key] = value
    return result


def validate_policy(policy: Mapping[str, Any]) -> List[str]:
    """Validate a policy dict. Returns error strings (empty = valid)."""
    errors: List[str] = []

    if "policy_id" not in policy:
        errors.append("Missing required field: policy_id")

    try:
        MetaPolicy.from_dict(policy)
    except PolicyError as e:
        errors.append(f"typed sections invalid: {e}")

    arb = policy.get("arbitration") or {}
    if not isinstance(arb, Mapping):
        errors.append("arbitration must be a mapping")
        return errors
    for key in ArbitrationThresholds.__dataclass_fields__:
        if key in arb:
            try:
                v = float(arb[key])
            except (TypeError, ValueError):
                errors.append(f"arbitration.{key} must be a number")
                continue
            if not (0.0 <= v <= 1.0):
                errors.append(f"arbitration.{key} must be between 0.0 and 1.0")
    try:
        if float(arb.get("fuse_lower", 0.5)) > float(arb.get("accept_score", 0.7)):
            errors.append("arbitration.fuse_lower must not exceed arbitration.accept_score")
    except (TypeError, ValueError):
        pass

    return errors


def thresholds_from_policy(policy: Mapping[str, Any]) -> ArbitrationThresholds:
    return ArbitrationThresholds.from_dict(policy.get("arbitration") or {})
