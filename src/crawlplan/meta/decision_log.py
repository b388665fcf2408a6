"""Decision audit sinks.

One write-once DecisionLogEntry per arbitration outcome. Sinks are
pluggable; callers treat ``log`` as best-effort and swallow its failures.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from itertools import islice
from typing import Any, Deque, Dict, List, Optional, Tuple

from crawlplan.config import Settings
from crawlplan.storage.store import append_jsonl, tail_jsonl

from .interfaces import DecisionLogger
from .types import Decision


@dataclass(frozen=True)
class DecisionLogEntry:
    timestamp: float
    outcome: str
    confidence: float
    rationale: Tuple[str, ...] = ()
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "outcome": self.outcome,
            "confidence": self.confidence,
            "rationale": list(self.rationale),
            "context": dict(self.context),
        }

    @classmethod
    def from_decision(cls, decision: Decision, context: Optional[Dict[str, Any]] = None) -> "DecisionLogEntry":
        return cls(
            timestamp=time.time(),
            outcome=decision.outcome.value,
            confidence=decision.confidence,
            rationale=tuple(decision.rationale),
            context=dict(context or {}),
        )


class NullDecisionLogger(DecisionLogger):
    def log(self, entry: Any) -> None:
        return None


class MemoryDecisionLogger(DecisionLogger):
    """Bounded in-process audit buffer."""

    def __init__(self, max_entries: int = 1000) -> None:
        self._entries: Deque[DecisionLogEntry] = deque(maxlen=max(1, max_entries))
        self._lock = threading.Lock()

    def log(self, entry: DecisionLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        if limit <= 0:
            return []
        with self._lock:
            items = list(self._entries)
        return [e.to_dict() for e in islice(reversed(items), limit)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class JsonlDecisionLogger(DecisionLogger):
    """Appends one JSON line per decision."""

    def __init__(self, path: str = "") -> None:
        self.path = path or Settings.DECISION_LOG_PATH
        self._lock = threading.Lock()

    def log(self, entry: DecisionLogEntry) -> None:
        with self._lock:
            append_jsonl(self.path, entry.to_dict())

    def recent(self, limit: int = 20) -> List[Dict[str, Any]]:
        return tail_jsonl(self.path, limit)


def decision_logger_from_policy(section: Optional[Dict[str, Any]] = None) -> DecisionLogger:
    """Build a sink from the ``decision_log`` policy section."""
    section = dict(section or {})
    sink = str(section.get("sink") or "memory").lower()
    if Settings.PERSIST_DECISIONS or sink == "jsonl":
        return JsonlDecisionLogger(str(section.get("path") or Settings.DECISION_LOG_PATH))
    if sink in ("null", "none", "off"):
        return NullDecisionLogger()
    return MemoryDecisionLogger(int(section.get("max_entries") or 1000))
