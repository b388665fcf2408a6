# api/meta.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from crawlplan.config import Settings
from crawlplan.meta.coordinator import build_coordinator
from crawlplan.meta.effectiveness import EffectivenessTracker
from crawlplan.meta.errors import NothingToArbitrateError
from crawlplan.meta.policy import load_policy, validate_policy

router = APIRouter()

POLICY: Dict[str, Any] = load_policy(Settings.POLICY_PATH)
tracker = EffectivenessTracker(max_samples=(POLICY.get("tracker") or {}).get("max_samples"))
coordinator = build_coordinator(POLICY, tracker=tracker)


class ProcessRequest(BaseModel):
    blueprint: Optional[Dict[str, Any]] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    microprolog_plan: Optional[Dict[str, Any]] = None
    alternative_plans: List[Dict[str, Any]] = Field(default_factory=list)


class ExecutionReport(BaseModel):
    domain: str = Field(..., min_length=1)
    session_id: Optional[str] = None
    contributions: Dict[str, Any] = Field(default_factory=dict)
    kpis: Dict[str, Any] = Field(default_factory=dict)


@router.post("/process")
def process(req: ProcessRequest) -> Dict[str, Any]:
    try:
        outcome = coordinator.process(
            blueprint=req.blueprint,
            context=req.context,
            microprolog_plan=req.microprolog_plan,
            alternative_plans=req.alternative_plans,
        )
    except NothingToArbitrateError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return outcome.to_dict()


@router.post("/executions")
def record_execution(report: ExecutionReport) -> Dict[str, Any]:
    sample = tracker.record_execution_metrics(
        domain=report.domain,
        session_id=report.session_id,
        contributions=report.contributions,
        kpis=report.kpis,
    )
    return {"ok": True, "sample": sample.to_dict()}


@router.get("/executions")
def executions(limit: int = Query(20, ge=1, le=1000)) -> Dict[str, Any]:
    return {"items": tracker.get_execution_kpis(limit)}


@router.get("/previews")
def previews(limit: int = Query(20, ge=1, le=1000)) -> Dict[str, Any]:
    return {"items": tracker.get_recent_preview_stats(limit)}


@router.get("/decisions")
def decisions(limit: int = Query(20, ge=1, le=1000)) -> Dict[str, Any]:
    sink = getattr(coordinator.arbitrator, "decision_logger", None)
    recent = getattr(sink, "recent", None)
    return {"items": recent(limit) if callable(recent) else []}


@router.get("/policy")
def policy() -> Dict[str, Any]:
    errors = validate_policy(POLICY)
    return {"policy": POLICY, "valid": len(errors) == 0, "errors": errors}
