from __future__ import annotations

import logging
import os


def env(key: str, default: str = "") -> str:
    return os.getenv(key, default)


class Settings:
    # Logic-program planner stays off until it proves viable.
    MICROPROLOG_ENABLED = env("CRAWLPLAN_MICROPROLOG_ENABLED", "0") == "1"

    POLICY_PATH = env("CRAWLPLAN_POLICY_PATH", "crawlplan_policy.yaml")

    DECISION_LOG_PATH = env("CRAWLPLAN_DECISION_LOG_PATH", ".crawlplan_decisions.jsonl")
    PERSIST_DECISIONS = env("CRAWLPLAN_PERSIST_DECISIONS", "0") == "1"

    TRACKER_MAX_SAMPLES = int(env("CRAWLPLAN_TRACKER_MAX_SAMPLES", "5000"))

    LOG_LEVEL = env("CRAWLPLAN_LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = "") -> None:
    """Root logging setup for entrypoints (API, scripts)."""
    logging.basicConfig(
        level=getattr(logging, level or Settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
