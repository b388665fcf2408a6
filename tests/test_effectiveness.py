"""Effectiveness tracker tests: bounded read-back, immutability, summaries."""
import threading

from crawlplan.meta.effectiveness import EffectivenessTracker
from crawlplan.meta.types import Score


class _Clock:
    def __init__(self, t=1_000_000.0):
        self.t = t

    def __call__(self):
        return self.t


def _score(total=0.6):
    return Score(total_score=total, metrics={"explainability": 0.5}, confidence=0.4)


def _bp(domain="example.com", n=0):
    return {"domain": domain, "proposedHubs": [{"url": f"https://{domain}/h{n}"}]}


def test_preview_read_back_most_recent_first():
    t = EffectivenessTracker(max_samples=100)
    for i in range(5):
        t.observe_preview_score(_score(i / 10), _bp(n=i))
    recent = t.get_recent_preview_stats(3)
    assert len(recent) == 3
    assert [r["plan_score"]["total_score"] for r in recent] == [0.4, 0.3, 0.2]
    assert recent[0]["domain"] == "example.com"
    assert recent[0]["kind"] == "preview"
    assert recent[0]["plan_fingerprint"]


def test_limit_never_exceeded():
    t = EffectivenessTracker(max_samples=100)
    t.observe_preview_score(_score(), _bp())
    assert len(t.get_recent_preview_stats(10)) == 1
    assert t.get_recent_preview_stats(0) == []
    assert t.get_recent_preview_stats(-1) == []


def test_retention_is_bounded():
    t = EffectivenessTracker(max_samples=3)
    for i in range(10):
        t.observe_preview_score(_score(i / 10), _bp(n=i))
    recent = t.get_recent_preview_stats(100)
    assert len(recent) == 3
    assert recent[-1]["plan_score"]["total_score"] == 0.7


def test_read_back_cannot_mutate_samples():
    t = EffectivenessTracker()
    t.observe_preview_score(_score(0.5), _bp())
    first = t.get_recent_preview_stats(1)[0]
    first["plan_score"]["total_score"] = 99
    first["domain"] = "evil.com"
    again = t.get_recent_preview_stats(1)[0]
    assert again["plan_score"]["total_score"] == 0.5
    assert again["domain"] == "example.com"


def test_later_observations_do_not_touch_earlier_samples():
    t = EffectivenessTracker()
    payload = {"total_score": 0.5}
    t.observe_preview_score(payload, _bp())
    payload["total_score"] = 0.9
    t.observe_preview_score(payload, _bp())
    recent = t.get_recent_preview_stats(2)
    assert [r["plan_score"]["total_score"] for r in recent] == [0.9, 0.5]


def test_preview_domain_from_context():
    t = EffectivenessTracker()
    t.observe_preview_score(_score(), {"proposedHubs": []}, {"options": {"domain": "www.News.example"}})
    assert t.get_recent_preview_stats(1)[0]["domain"] == "news.example"


def test_execution_kpis_recorded():
    t = EffectivenessTracker()
    t.record_execution_metrics(
        domain="Example.com",
        session_id="s-1",
        contributions={"blueprint": 1.0},
        kpis={"success_rate": 0.9},
    )
    t.record_execution_metrics(domain="example.com", session_id="s-2", kpis={"success_rate": 0.7})
    items = t.get_execution_kpis(5)
    assert [i["session_id"] for i in items] == ["s-2", "s-1"]
    assert items[1]["contributions"] == {"blueprint": 1.0}
    assert items[1]["domain"] == "example.com"
    assert items[0]["kind"] == "execution"


def test_history_for_summary():
    clock = _Clock()
    t = EffectivenessTracker(clock=clock)
    t.observe_preview_score({"total_score": 0.6}, _bp())
    t.observe_preview_score({"total_score": 0.8}, _bp())
    t.record_execution_metrics(domain="example.com", kpis={"success_rate": 0.8, "article_yield": 0.4})
    t.record_execution_metrics(domain="other.org", kpis={"success_rate": 0.1})

    h = t.history_for("example.com", now=clock.t + 7200)
    assert h["sample_count"] == 1
    assert h["preview_count"] == 2
    assert h["avg_preview_score"] == 0.7
    assert h["success_rate"] == 0.8
    assert h["error_rate"] == 0.2
    assert h["article_yield"] == 0.4
    assert h["last_run_age_hours"] == 2.0


def test_history_for_unknown_domain():
    h = EffectivenessTracker().history_for("nowhere.test")
    assert h == {"sample_count": 0, "preview_count": 0}


def test_success_rate_from_page_counts():
    t = EffectivenessTracker()
    t.record_execution_metrics(domain="example.com", kpis={"pages_fetched": 30, "pages_failed": 10})
    assert t.history_for("example.com")["success_rate"] == 0.75


def test_clear():
    t = EffectivenessTracker()
    t.observe_preview_score(_score(), _bp())
    t.record_execution_metrics(domain="example.com")
    t.clear()
    assert t.get_recent_preview_stats(10) == []
    assert t.get_execution_kpis(10) == []


def test_concurrent_appends():
    t = EffectivenessTracker(max_samples=10_000)

    def worker(n):
        for i in range(100):
            t.observe_preview_score(_score(), _bp(n=n * 1000 + i))
            t.record_execution_metrics(domain="example.com", session_id=f"{n}-{i}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert len(t.get_recent_preview_stats(10_000)) == 800
    assert len(t.get_execution_kpis(10_000)) == 800


def test_explicit_zero_retention_keeps_one_sample():
    t = EffectivenessTracker(max_samples=0)
    assert t.max_samples == 1
    t.observe_preview_score(_score(0.1), _bp(n=1))
    t.observe_preview_score(_score(0.2), _bp(n=2))
    recent = t.get_recent_preview_stats(10)
    assert [r["plan_score"]["total_score"] for r in recent] == [0.2]
