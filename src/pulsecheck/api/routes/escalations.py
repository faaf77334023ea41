"""Escalation endpoints used by the chat backend."""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import Field

from pulsecheck.api.dependencies import get_engine
from pulsecheck.escalation.engine import EscalationEngine
from pulsecheck.models.base import DocumentModel

router = APIRouter(tags=["escalations"])


class EvaluateRequest(DocumentModel):
    conversation_id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    message: str = ""
    message_id: str = ""
    classification: dict[str, Any]
    conversation_summary: Optional[str] = None


class ConsentRequest(DocumentModel):
    user_id: str = Field(min_length=1)
    accepted: bool = Field(strict=True)


class AcknowledgeRequest(DocumentModel):
    actor: str = Field(min_length=1)


class CloseRequest(DocumentModel):
    actor: str = Field(min_length=1)
    reason: str = "resolved"


class SummaryRequest(DocumentModel):
    summary: str = Field(min_length=1)
    actor: str = "system"


@router.post("/escalations/evaluate")
def evaluate(body: EvaluateRequest, engine: EscalationEngine = Depends(get_engine)) -> dict:
    result = engine.evaluate(
        body.conversation_id,
        body.user_id,
        body.message,
        body.classification,
        message_id=body.message_id,
        conversation_summary=body.conversation_summary,
    )
    return result.to_document()


@router.get("/escalations/{escalation_id}")
def get_escalation(escalation_id: str, engine: EscalationEngine = Depends(get_engine)) -> dict:
    return engine.get_record(escalation_id).to_document()


@router.post("/escalations/{escalation_id}/consent")
def submit_consent(
    escalation_id: str, body: ConsentRequest, engine: EscalationEngine = Depends(get_engine)
) -> dict:
    return engine.submit_consent(escalation_id, body.user_id, body.accepted).to_document()


@router.post("/escalations/{escalation_id}/acknowledge")
def acknowledge(
    escalation_id: str, body: AcknowledgeRequest, engine: EscalationEngine = Depends(get_engine)
) -> dict:
    return engine.acknowledge(escalation_id, body.actor).to_document()


@router.post("/escalations/{escalation_id}/close")
def close(
    escalation_id: str, body: CloseRequest, engine: EscalationEngine = Depends(get_engine)
) -> dict:
    return engine.close(escalation_id, body.actor, body.reason).to_document()


@router.put("/escalations/{escalation_id}/summary")
def set_summary(
    escalation_id: str, body: SummaryRequest, engine: EscalationEngine = Depends(get_engine)
) -> dict:
    """Conversation summary for the clinical team, supplied by the chat backend."""
    return engine.set_summary(escalation_id, body.summary, body.actor).to_document()


@router.get("/conversations/{conversation_id}/escalation")
def conversation_escalation(
    conversation_id: str, engine: EscalationEngine = Depends(get_engine)
) -> dict:
    """UI state for the chat screen: safety mode and pending consent flags."""
    return engine.conversation_view(conversation_id).to_document()
