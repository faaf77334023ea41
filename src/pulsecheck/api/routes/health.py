"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from pulsecheck.api.dependencies import Services, get_services

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
def ready(services: Services = Depends(get_services)) -> dict:
    clinical_ok = bool(getattr(services.clinical, "health_check", lambda: True)())
    return {
        "status": "ready" if clinical_ok else "degraded",
        "backend": services.settings.backend,
        "clinical": "ok" if clinical_ok else "unreachable",
    }
