from __future__ import annotations

import json
import os
from collections import deque
from typing import Any, Deque, Dict, List


def append_jsonl(path: str, obj: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False, default=str) + "\n")


def tail_jsonl(path: str, limit: int = 100) -> List[Dict[str, Any]]:
    """Last ``limit`` valid records of a JSONL file, most recent first.

    Unparsable lines are skipped and do not count toward ``limit``.
    """
    if limit <= 0 or not os.path.exists(path):
        return []
    window: Deque[Dict[str, Any]] = deque(maxlen=limit)
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                window.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return list(reversed(window))
