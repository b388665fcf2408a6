"""Decision audit sink tests."""
from crawlplan.meta.decision_log import (
    DecisionLogEntry, JsonlDecisionLogger, MemoryDecisionLogger, NullDecisionLogger,
    decision_logger_from_policy,
)
from crawlplan.meta.types import Decision, OutcomeKind
from crawlplan.storage.store import tail_jsonl


def _entry(outcome=OutcomeKind.REPLAN, conf=0.4):
    d = Decision(outcome=outcome, rationale=["validator_reject"], confidence=conf)
    return DecisionLogEntry.from_decision(d, {"domain": "example.com"})


def test_entry_from_decision():
    e = _entry()
    assert e.outcome == "replan"
    assert e.rationale == ("validator_reject",)
    assert e.to_dict()["context"] == {"domain": "example.com"}


def test_memory_sink_bounded_most_recent_first():
    sink = MemoryDecisionLogger(max_entries=2)
    sink.log(_entry(conf=0.1))
    sink.log(_entry(conf=0.2))
    sink.log(_entry(conf=0.3))
    assert len(sink) == 2
    assert [e["confidence"] for e in sink.recent(10)] == [0.3, 0.2]
    assert sink.recent(0) == []


def test_jsonl_sink(tmp_path):
    path = str(tmp_path / "audit" / "decisions.jsonl")
    sink = JsonlDecisionLogger(path)
    sink.log(_entry(OutcomeKind.REPLAN))
    sink.log(_entry(OutcomeKind.FUSE))
    recent = sink.recent(5)
    assert [r["outcome"] for r in recent] == ["fuse", "replan"]


def test_tail_skips_bad_lines(tmp_path):
    path = tmp_path / "log.jsonl"
    path.write_text('{"a": 1}\nnot json\n\n{"a": 2}\n', encoding="utf-8")
    assert tail_jsonl(str(path), 10) == [{"a": 2}, {"a": 1}]
    assert tail_jsonl(str(path), 1) == [{"a": 2}]
    assert tail_jsonl(str(tmp_path / "missing.jsonl")) == []


def test_sink_from_policy(tmp_path):
    assert isinstance(decision_logger_from_policy({}), MemoryDecisionLogger)
    assert isinstance(decision_logger_from_policy({"sink": "null"}), NullDecisionLogger)
    jsonl = decision_logger_from_policy({"sink": "jsonl", "path": str(tmp_path / "d.jsonl")})
    assert isinstance(jsonl, JsonlDecisionLogger)
    assert jsonl.path.endswith("d.jsonl")


def test_tail_counts_only_valid_records(tmp_path):
    path = tmp_path / "log.jsonl"
    path.write_text('{"a": 1}\n{"a": 2}\n{broken\n{"a": 3}\n', encoding="utf-8")
    assert tail_jsonl(str(path), 2) == [{"a": 3}, {"a": 2}]


def test_jsonl_recent_fills_limit_past_corrupt_line(tmp_path):
    path = str(tmp_path / "decisions.jsonl")
    sink = JsonlDecisionLogger(path)
    sink.log(_entry(OutcomeKind.REPLAN))
    sink.log(_entry(OutcomeKind.FUSE))
    with open(path, "a", encoding="utf-8") as f:
        f.write("not json\n")
    assert [r["outcome"] for r in sink.recent(2)] == ["fuse", "replan"]
