"""Health check endpoint for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Lightweight health check (no storage round-trip).

    Reports the configured storage backend and current audit buffer size.
    """
    return {
        "status": "ok",
        "service": "sekolah-rbac",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": request.app.state.settings.environment,
        "storage_backend": request.app.state.settings.storage_backend,
        "audit_entries": len(request.app.state.engine.audit),
    }
