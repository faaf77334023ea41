"""Admin endpoints for escalation conditions and record maintenance."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from pulsecheck.api.dependencies import get_conditions, get_engine
from pulsecheck.escalation.conditions import ConditionService
from pulsecheck.escalation.engine import EscalationEngine
from pulsecheck.models.condition import EscalationConditionInput, EscalationConditionUpdate

router = APIRouter(tags=["admin"])


@router.get("/conditions")
def list_conditions(
    active_only: bool = Query(False, alias="activeOnly"),
    tier: Optional[int] = Query(None, ge=0, le=3),
    service: ConditionService = Depends(get_conditions),
) -> dict:
    conditions = service.list(active_only=active_only, tier=tier)
    return {"conditions": [c.to_document() for c in conditions]}


@router.post("/conditions", status_code=201)
def create_condition(
    body: EscalationConditionInput,
    created_by: str = Query("", alias="createdBy"),
    service: ConditionService = Depends(get_conditions),
) -> dict:
    return service.create(body, created_by=created_by).to_document()


# Declared before /conditions/{condition_id} routes so the literal path wins.
@router.get("/conditions/training-context")
def training_context(service: ConditionService = Depends(get_conditions)) -> dict:
    return {"context": service.training_context()}


@router.get("/conditions/{condition_id}")
def get_condition(condition_id: str, service: ConditionService = Depends(get_conditions)) -> dict:
    return service.get(condition_id).to_document()


@router.put("/conditions/{condition_id}")
def update_condition(
    condition_id: str,
    body: EscalationConditionUpdate,
    service: ConditionService = Depends(get_conditions),
) -> dict:
    return service.update(condition_id, body).to_document()


@router.post("/conditions/{condition_id}/deactivate")
def deactivate_condition(
    condition_id: str, service: ConditionService = Depends(get_conditions)
) -> dict:
    return service.deactivate(condition_id).to_document()


@router.delete("/conditions/{condition_id}", status_code=204)
def delete_condition(
    condition_id: str, service: ConditionService = Depends(get_conditions)
) -> Response:
    service.delete(condition_id)
    return Response(status_code=204)


@router.get("/escalations/recent")
def recent_escalations(
    limit: int = Query(50, ge=1, le=500),
    engine: EscalationEngine = Depends(get_engine),
) -> dict:
    return {"escalations": [r.to_document() for r in engine.recent_records(limit)]}


@router.post("/escalations/expire-consents")
def expire_consents(engine: EscalationEngine = Depends(get_engine)) -> dict:
    expired = engine.expire_stale_consents()
    return {"count": len(expired), "expired": [r.id for r in expired]}
