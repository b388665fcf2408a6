# api/main.py
"""Crawl meta-planning API — FastAPI backend.

Endpoints:
  GET  /                   Health check
  POST /meta/process       Validate, score and arbitrate candidate plans
  POST /meta/executions    Executor callback with post-run KPIs
  GET  /meta/executions    Recent execution KPIs (most recent first)
  GET  /meta/previews      Recent preview scores (most recent first)
  GET  /meta/decisions     Recent arbitration audit entries
  GET  /meta/policy        Active policy + validation errors
"""
from __future__ import annotations

import os
import sys

# Ensure src is on path (repo_root/src)
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from fastapi import FastAPI

from crawlplan import __version__
from crawlplan.config import configure_logging

from api.meta import coordinator, router as meta_router

configure_logging()

app = FastAPI(
    title="Crawl meta-planning API",
    description="Adaptive plan arbitration for the crawl planner",
    version=__version__,
)

app.include_router(meta_router, prefix="/meta", tags=["meta"])


@app.get("/")
def health():
    return {
        "status": "ok",
        "version": __version__,
        "microprolog_enabled": coordinator.microprolog_enabled,
    }
