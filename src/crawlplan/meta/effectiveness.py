"""Effectiveness feedback store.

Records preview scores (what the evaluator thought of a plan) and
post-execution KPIs (what actually happened), and summarizes them per
domain so future evaluations can use them.

Design:
  - Append-only: samples are frozen; readers get fresh dicts
  - Bounded retention: one deque(maxlen) per sample kind
  - Thread-safe: a single lock guards append and read
  - Read-back is most-recent-first and never exceeds ``limit``
"""
from __future__ import annotations

import copy
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from itertools import islice
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional

from crawlplan.config import Settings
from crawlplan.utils.stable import plan_fingerprint

from .types import MetaContext, Score, as_float, clamp01, normalize_domain, plan_domain


@dataclass(frozen=True)
class EffectivenessSample:
    timestamp: float
    domain: str
    kind: str                                   # preview | execution
    plan_score: Optional[Dict[str, Any]] = None
    execution_kpis: Optional[Dict[str, Any]] = None
    contributions: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = None
    plan_fingerprint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        # asdict deep-copies nested containers
        return asdict(self)


class EffectivenessTracker:

    def __init__(
        self,
        max_samples: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_samples is None:
            max_samples = Settings.TRACKER_MAX_SAMPLES
        self.max_samples = max(1, int(max_samples))
        self._clock = clock
        self._lock = threading.Lock()
        self._previews: Deque[EffectivenessSample] = deque(maxlen=self.max_samples)
        self._executions: Deque[EffectivenessSample] = deque(maxlen=self.max_samples)

    def observe_preview_score(
        self,
        score: Any,
        blueprint: Any,
        context: Any = None,
    ) -> EffectivenessSample:
        ctx = MetaContext.from_dict(context)
        payload = score.to_dict() if isinstance(score, Score) else dict(score or {})
        sample = EffectivenessSample(
            timestamp=self._clock(),
            domain=plan_domain(blueprint, ctx.domain),
            kind="preview",
            plan_score=_copy_dict(payload),
            plan_fingerprint=plan_fingerprint(blueprint),
        )
        with self._lock:
            self._previews.append(sample)
        return sample

    def record_execution_metrics(
        self,
        *,
        domain: str,
        session_id: Optional[str] = None,
        contributions: Optional[Mapping[str, Any]] = None,
        kpis: Optional[Mapping[str, Any]] = None,
    ) -> EffectivenessSample:
        """Executor callback after a plan ran (closes the feedback loop)."""
        sample = EffectivenessSample(
            timestamp=self._clock(),
            domain=normalize_domain(domain),
            kind="execution",
            execution_kpis=_copy_dict(kpis),
            contributions=_copy_dict(contributions),
            session_id=session_id,
        )
        with self._lock:
            self._executions.append(sample)
        return sample

    def get_recent_preview_stats(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self._previews)
        return _most_recent(items, limit)

    def get_execution_kpis(self, limit: int = 20) -> List[Dict[str, Any]]:
        with self._lock:
            items = list(self._executions)
        return _most_recent(items, limit)

    def history_for(self, domain: str, now: Optional[float] = None) -> Dict[str, Any]:
        """Per-domain summary in the shape the evaluator reads."""
        dom = normalize_domain(domain)
        with self._lock:
            previews = [s for s in self._previews if s.domain == dom]
            executions = [s for s in self._executions if s.domain == dom]

        summary: Dict[str, Any] = {
            "sample_count": len(executions),
            "preview_count": len(previews),
        }
        if previews:
            summary["avg_preview_score"] = round(
                _mean(as_float((s.plan_score or {}).get("total_score")) for s in previews), 4
            )
        if executions:
            kpis = [s.execution_kpis or {} for s in executions]
            success = [_success_rate(k) for k in kpis]
            summary["success_rate"] = round(_mean(success), 4)
            summary["error_rate"] = round(_mean(
                clamp01(as_float(k.get("error_rate"), 1.0 - s)) for k, s in zip(kpis, success)
            ), 4)
            yields = [clamp01(as_float(k.get("article_yield"))) for k in kpis if "article_yield" in k]
            if yields:
                summary["article_yield"] = round(_mean(yields), 4)
            now = self._clock() if now is None else now
            summary["last_run_age_hours"] = round(max(0.0, now - executions[-1].timestamp) / 3600.0, 4)
        return summary

    def clear(self) -> None:
        with self._lock:
            self._previews.clear()
            self._executions.clear()


def _copy_dict(d: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    return copy.deepcopy(dict(d or {}))


def _most_recent(items: List[EffectivenessSample], limit: int) -> List[Dict[str, Any]]:
    if limit <= 0:
        return []
    return [s.to_dict() for s in islice(reversed(items), limit)]


def _success_rate(kpis: Mapping[str, Any]) -> float:
    if "success_rate" in kpis:
        return clamp01(as_float(kpis.get("success_rate")))
    if "error_rate" in kpis:
        return clamp01(1.0 - as_float(kpis.get("error_rate")))
    fetched = as_float(kpis.get("pages_fetched"))
    failed = as_float(kpis.get("pages_failed"))
    if fetched + failed > 0:
        return clamp01(fetched / (fetched + failed))
    return 0.5


def _mean(values: Iterable[float]) -> float:
    vals = list(values)
    return sum(vals) / len(vals) if vals else 0.0
