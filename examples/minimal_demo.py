#!/usr/bin/env python3
"""
Crawl Meta-Planning — Minimal Example
=====================================

Run this → see validation, scoring, arbitration and the feedback loop.

    python3 examples/minimal_demo.py

No network access. Plans are hand-written dicts.
"""
from __future__ import annotations

import json
import os
import sys

# ── Setup path ────────────────────────────────────────────────────
# Add src/ to path so crawlplan package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from crawlplan.meta.coordinator import build_coordinator
from crawlplan.meta.effectiveness import EffectivenessTracker
from crawlplan.meta.policy import POLICY_DEFAULTS


def divider(title: str) -> None:
    print(f"\n{'═' * 70}")
    print(f"  {title}")
    print(f"{'═' * 70}\n")


def show_outcome(outcome) -> None:
    d = outcome.decision
    print(f"  Valid:      {outcome.validator_result.valid}  issues={outcome.validator_result.issues}")
    print(f"  Outcome:    {d.outcome.value}")
    print(f"  Confidence: {d.confidence:.3f}")
    print(f"  Rationale:  {d.rationale}")
    for sp in outcome.alternative_scores:
        print(f"  Candidate:  {sp.plan.get('source', 'blueprint'):<12} total={sp.score.total_score:.3f}"
              f" confidence={sp.score.confidence}")
    if outcome.replay:
        r = outcome.replay
        print(f"  Replay:     requests={r.planned_requests} duration_s={r.expected_duration_s}"
              f" errors={r.expected_errors}")


BLUEPRINT = {
    "domain": "news.example.com",
    "sessionId": "demo-1",
    "proposedHubs": [
        {"url": "https://news.example.com/world", "confidence": 0.9, "reason": "section index"},
        {"url": "https://news.example.com/sport", "confidence": 0.7, "reason": "section index"},
        {"url": "https://tracker.elsewhere.net/x", "confidence": 0.9},
    ],
    "seedQueue": ["https://news.example.com/"],
    "schedulingConstraints": {"maxRequestsPerMinute": 30, "concurrency": 2},
    "rationale": ["pattern: /<section>", "sitemap present"],
}

ALTERNATIVE = {
    "source": "graph",
    "domain": "news.example.com",
    "proposedHubs": [
        {"url": "https://news.example.com/tags/climate", "confidence": 0.6, "source": "graph"},
    ],
    "seedQueue": [],
    "rationale": ["link-graph hub"],
}


def main() -> None:
    tracker = EffectivenessTracker(max_samples=100)
    coordinator = build_coordinator(POLICY_DEFAULTS, tracker=tracker)

    divider("1. First run: no history")
    outcome = coordinator.process(
        blueprint=BLUEPRINT,
        context={"options": {"domain": "news.example.com"}},
        alternative_plans=[ALTERNATIVE],
    )
    show_outcome(outcome)

    divider("2. Executor reports KPIs")
    for i in range(4):
        tracker.record_execution_metrics(
            domain="news.example.com",
            session_id=f"demo-{i}",
            contributions={"blueprint": 0.8, "graph": 0.2},
            kpis={"success_rate": 0.92, "article_yield": 0.45},
        )
    print(json.dumps(tracker.history_for("news.example.com"), indent=2))

    divider("3. Second run: history raises confidence")
    outcome = coordinator.process(
        blueprint=BLUEPRINT,
        context={"options": {"domain": "news.example.com"}},
        alternative_plans=[ALTERNATIVE],
    )
    show_outcome(outcome)

    divider("4. Unsafe blueprint → replan")
    unsafe = dict(BLUEPRINT, schedulingConstraints={"maxRequestsPerMinute": 5000, "concurrency": 64})
    outcome = coordinator.process(
        blueprint=unsafe,
        context={"options": {"domain": "news.example.com"}},
        alternative_plans=[ALTERNATIVE],
    )
    show_outcome(outcome)


if __name__ == "__main__":
    main()
