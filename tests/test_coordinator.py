"""Meta-plan coordinator tests: orchestration order and degradation."""
import copy

import pytest

from crawlplan.meta.coordinator import MetaPlanCoordinator, build_coordinator
from crawlplan.meta.effectiveness import EffectivenessTracker
from crawlplan.meta.errors import NothingToArbitrateError, PolicyError
from crawlplan.meta.interfaces import Evaluator, Simulator
from crawlplan.meta.policy import POLICY_DEFAULTS
from crawlplan.meta.types import OutcomeKind, Score

def _blueprint(**kw):
    bp = {
        "domain": "example.com",
        "sessionId": "bp-1",
        "proposedHubs": [
            {"url": "https://example.com/news", "confidence": 0.9, "reason": "section"},
            {"url": "https://example.com/sport", "confidence": 0.7, "reason": "section"},
        ],
        "seedQueue": ["https://example.com/"],
        "schedulingConstraints": {"maxRequestsPerMinute": 30, "concurrency": 2},
        "rationale": ["pattern match"],
    }
    bp.update(kw)
    return bp

def _alt(label="graph"):
    return {
        "source": label,
        "domain": "example.com",
        "proposedHubs": [{"url": f"https://example.com/{label}", "confidence": 0.6}],
        "seedQueue": [],
    }

CTX = {"options": {"domain": "example.com"}}

def _coord(**kw):
    kw.setdefault("microprolog_enabled", False)
    return MetaPlanCoordinator(**kw)

class _FixedEvaluator(Evaluator):
    def __init__(self, score):
        self.fixed = score
        self.calls = 0

    def score(self, plan, *, validator_metrics=None, history=None, telemetry=None, options=None):
        self.calls += 1
        return self.fixed

class _BrokenSimulator(Simulator):
    def simulate(self, *, domain, blueprint):
        raise TimeoutError("replay backend slow")

def test_nothing_to_arbitrate():
    with pytest.raises(NothingToArbitrateError):
        _coord().process(blueprint=None, context=CTX, alternative_plans=[])
    with pytest.raises(ValueError):
        _coord().process(blueprint=None, context=CTX)

def test_blueprint_only():
    out = _coord().process(blueprint=_blueprint(), context=CTX)
    assert out.validator_result.valid is True
    assert len(out.alternative_scores) == 1
    assert out.alternative_scores[0].plan is out.sanitized_blueprint
    assert out.decision.outcome == OutcomeKind.ACCEPT_ALTERNATIVE
    assert out.decision.chosen_plan is out.sanitized_blueprint
    assert out.decision.rationale == ["microprolog_absent"]
    assert out.replay.complete is True
    assert out.micro_score is None

def test_sanitized_blueprint_inserted_first():
    out = _coord().process(blueprint=_blueprint(), context=CTX, alternative_plans=[_alt("a"), _alt("b")])
    plans = [sp.plan for sp in out.alternative_scores]
    assert plans[0] is out.sanitized_blueprint
    assert [p.get("source") for p in plans[1:]] == ["a", "b"]

def test_sanitized_blueprint_scored_with_validator_metrics():
    out = _coord().process(blueprint=_blueprint(), context=CTX)
    assert out.alternative_scores[0].score.metrics["safety"] == out.validator_result.metrics.safety_score

def test_listed_blueprint_is_replaced_by_sanitized_copy():
    hubs = [{"url": f"https://example.com/s{i}", "confidence": 0.8, "reason": "section"} for i in range(9)]
    bp = _blueprint(proposedHubs=hubs + [{"url": "https://evil.test/x", "confidence": 0.9}])
    out = _coord().process(blueprint=bp, context=CTX, alternative_plans=[bp, _alt()])
    assert out.validator_result.valid is True
    assert len(out.alternative_scores) == 2
    assert out.alternative_scores[0].plan is out.sanitized_blueprint
    assert all(sp.plan is not bp for sp in out.alternative_scores)
    chosen = out.decision.chosen_plan
    assert chosen is out.sanitized_blueprint
    assert "https://evil.test/x" not in [h["url"] for h in chosen["proposedHubs"]]

def test_listed_copy_of_blueprint_is_replaced_too():
    bp = _blueprint()
    out = _coord().process(blueprint=bp, context=CTX, alternative_plans=[copy.deepcopy(bp)])
    assert len(out.alternative_scores) == 1
    assert out.decision.chosen_plan is out.sanitized_blueprint

def test_listed_invalid_blueprint_is_never_the_replan_target():
    bad = _blueprint(schedulingConstraints={"concurrency": 500})
    alt = _alt()
    out = _coord().process(blueprint=bad, context=CTX, alternative_plans=[bad, alt])
    assert out.validator_result.valid is False
    assert out.validator_result.sanitized_blueprint["schedulingConstraints"]["concurrency"] == 16
    assert out.decision.outcome == OutcomeKind.REPLAN
    assert out.decision.chosen_plan is alt
    assert [sp.plan for sp in out.alternative_scores] == [alt]

def test_invalid_blueprint_replans():
    bad = _blueprint(schedulingConstraints={"concurrency": 500})
    alt = _alt()
    out = _coord().process(blueprint=bad, context=CTX, alternative_plans=[alt])
    assert out.validator_result.valid is False
    assert out.decision.outcome == OutcomeKind.REPLAN
    assert out.decision.chosen_plan is alt
    assert len(out.alternative_scores) == 1

def test_missing_blueprint_with_alternatives_replans():
    alt = _alt()
    out = _coord().process(blueprint=None, context=CTX, alternative_plans=[alt])
    assert out.decision.outcome == OutcomeKind.REPLAN
    assert out.decision.chosen_plan is alt
    assert out.sanitized_blueprint is None

def test_microprolog_disabled_is_ignored():
    out = _coord().process(blueprint=_blueprint(), context=CTX, microprolog_plan=_alt("micro"))
    assert "microprolog_disabled" in out.notes
    assert out.micro_score is None
    assert out.decision.outcome not in (OutcomeKind.ACCEPT_MICROPROLOG, OutcomeKind.FUSE)

def test_microprolog_enabled_is_scored():
    out = _coord(microprolog_enabled=True).process(
        blueprint=_blueprint(), context=CTX, microprolog_plan=_alt("micro"),
    )
    assert out.micro_score is not None
    assert "microprolog_disabled" not in out.notes

def test_injected_evaluator_drives_decision():
    strong = Score(total_score=0.9, metrics={"explainability": 0.9, "precision_proxy": 0.9}, confidence=0.8)
    evaluator = _FixedEvaluator(strong)
    micro = _alt("micro")
    out = _coord(evaluator=evaluator, microprolog_enabled=True).process(
        blueprint=_blueprint(), context=CTX, microprolog_plan=micro, alternative_plans=[_alt()],
    )
    assert evaluator.calls == 3
    assert out.decision.outcome == OutcomeKind.ACCEPT_MICROPROLOG
    assert out.decision.chosen_plan is micro

def test_replay_failure_does_not_abort():
    out = _coord(simulator=_BrokenSimulator()).process(blueprint=_blueprint(), context=CTX)
    assert "replay_failed" in out.notes
    assert out.replay == {}
    assert out.decision.outcome == OutcomeKind.ACCEPT_ALTERNATIVE
    assert out.to_dict()["replay"] == {}

def test_tracked_history_raises_confidence():
    tracker = EffectivenessTracker()
    for i in range(10):
        tracker.record_execution_metrics(domain="example.com", session_id=str(i), kpis={"success_rate": 0.9})
    cold = _coord().process(blueprint=_blueprint(), context=CTX)
    warm = _coord(tracker=tracker).process(blueprint=_blueprint(), context=CTX)
    assert warm.alternative_scores[0].score.confidence > cold.alternative_scores[0].score.confidence
    assert len(tracker.get_recent_preview_stats(10)) == 1

def test_build_coordinator_from_policy():
    coordinator = build_coordinator(POLICY_DEFAULTS)
    out = coordinator.process(blueprint=_blueprint(), context=CTX)
    assert len(coordinator.arbitrator.decision_logger) == 1
    assert coordinator.arbitrator.thresholds.accept_score == 0.7
    assert coordinator.microprolog_enabled is False
    d = out.to_dict()
    assert d["decision"]["outcome"] == "accept_alternative"
    assert d["validator_result"]["valid"] is True

def test_build_coordinator_microprolog_flag():
    policy = dict(POLICY_DEFAULTS, microprolog={"enabled": True})
    assert build_coordinator(policy).microprolog_enabled is True

def test_build_coordinator_rejects_bad_policy():
    with pytest.raises(PolicyError):
        build_coordinator(dict(POLICY_DEFAULTS, safety={"max_hubs": -5}))
