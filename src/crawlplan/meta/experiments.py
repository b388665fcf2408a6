"""Experiment Manager — controlled comparisons of arbitration configs.

Runs out of band from any single decision:
  - register a control/variant pair of ArbitrationThresholds
  - assign domains to an arm deterministically (stable hash bucket)
  - collect post-execution KPIs per arm
  - offline compare: replay recorded decide() inputs through both arms
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from crawlplan.utils.stable import bucket

from .arbitrator import ArbitrationThresholds, PlanArbitrator
from .decision_log import NullDecisionLogger
from .interfaces import Fusion
from .types import as_float, normalize_domain

CONTROL = "control"
VARIANT = "variant"
BUCKETS = 10_000


@dataclass(frozen=True)
class Experiment:
    name: str
    control: ArbitrationThresholds
    variant: ArbitrationThresholds
    traffic_split: float = 0.5          # share of domains on the variant

    def thresholds(self, arm: str) -> ArbitrationThresholds:
        return self.variant if arm == VARIANT else self.control


@dataclass
class ArmStats:
    runs: int = 0
    kpi_sums: Dict[str, float] = field(default_factory=dict)

    def add(self, kpis: Mapping[str, Any]) -> None:
        self.runs += 1
        for k, v in kpis.items():
            if isinstance(v, bool) or not isinstance(v, (int, float)):
                continue
            self.kpi_sums[k] = self.kpi_sums.get(k, 0.0) + float(v)

    def to_dict(self) -> Dict[str, Any]:
        means = {k: round(v / self.runs, 4) for k, v in self.kpi_sums.items()} if self.runs else {}
        return {"runs": self.runs, "kpi_means": means}


class ExperimentManager:

    def __init__(self, fusion: Optional[Fusion] = None) -> None:
        self.fusion = fusion
        self._experiments: Dict[str, Experiment] = {}
        self._stats: Dict[str, Dict[str, ArmStats]] = {}
        self._lock = threading.Lock()

    def register(
        self,
        name: str,
        control: ArbitrationThresholds,
        variant: ArbitrationThresholds,
        traffic_split: float = 0.5,
    ) -> Experiment:
        if not name:
            raise ValueError("experiment name is required")
        if not (0.0 <= traffic_split <= 1.0):
            raise ValueError("traffic_split must be between 0.0 and 1.0")
        exp = Experiment(name=name, control=control, variant=variant, traffic_split=traffic_split)
        with self._lock:
            self._experiments[name] = exp
            self._stats[name] = {CONTROL: ArmStats(), VARIANT: ArmStats()}
        return exp

    def get(self, name: str) -> Experiment:
        with self._lock:
            exp = self._experiments.get(name)
        if exp is None:
            raise KeyError(f"unknown experiment: {name!r}")
        return exp

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._experiments)

    def assign(self, name: str, domain: str) -> str:
        """Deterministic arm for a domain; same domain → same arm."""
        exp = self.get(name)
        b = bucket(f"{name}:{normalize_domain(domain) or domain}", BUCKETS)
        return VARIANT if b < exp.traffic_split * BUCKETS else CONTROL

    def arbitrator_for(self, name: str, domain: str, decision_logger: Any = None) -> PlanArbitrator:
        exp = self.get(name)
        return PlanArbitrator(
            thresholds=exp.thresholds(self.assign(name, domain)),
            fusion=self.fusion,
            decision_logger=decision_logger,
        )

    def record_outcome(self, name: str, domain: str, kpis: Mapping[str, Any], arm: Optional[str] = None) -> str:
        arm = arm or self.assign(name, domain)
        if arm not in (CONTROL, VARIANT):
            raise ValueError(f"unknown arm: {arm!r}")
        self.get(name)
        with self._lock:
            self._stats[name][arm].add(kpis)
        return arm

    def summary(self, name: str) -> Dict[str, Any]:
        exp = self.get(name)
        with self._lock:
            stats = {arm: s.to_dict() for arm, s in self._stats[name].items()}
        return {
            "name": exp.name,
            "traffic_split": exp.traffic_split,
            "control": exp.control.to_dict(),
            "variant": exp.variant.to_dict(),
            "arms": stats,
        }

    def compare(self, name: str, cases: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
        """Replay recorded decide() keyword arguments through both arms.

        Each case is the kwargs dict of one ``PlanArbitrator.decide`` call.
        Uses a null audit sink so offline comparisons leave no audit trail.
        """
        exp = self.get(name)
        control = PlanArbitrator(exp.control, fusion=self.fusion, decision_logger=NullDecisionLogger())
        variant = PlanArbitrator(exp.variant, fusion=self.fusion, decision_logger=NullDecisionLogger())

        rows: List[Dict[str, Any]] = []
        for i, case in enumerate(cases):
            a = control.decide(**case)
            b = variant.decide(**case)
            rows.append({
                "case": i,
                "control": a.outcome.value,
                "variant": b.outcome.value,
                "agree": a.outcome == b.outcome,
                "confidence_delta": round(as_float(b.confidence) - as_float(a.confidence), 4),
            })
        total = len(rows)
        agreed = sum(1 for r in rows if r["agree"])
        return {
            "name": exp.name,
            "cases": total,
            "agreement_rate": round(agreed / total, 4) if total else 1.0,
            "rows": rows,
        }
