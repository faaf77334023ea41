"""Coach dashboard endpoints. Status labels only, no clinical detail."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from pulsecheck.api.dependencies import get_engine
from pulsecheck.escalation.engine import EscalationEngine

router = APIRouter(tags=["coach"])


@router.get("/{coach_id}/escalations")
def coach_escalations(
    coach_id: str,
    active_only: bool = Query(False, alias="activeOnly"),
    engine: EscalationEngine = Depends(get_engine),
) -> dict:
    views = engine.coach_views(coach_id, active_only=active_only)
    return {"coachId": coach_id, "escalations": [v.to_document() for v in views]}
