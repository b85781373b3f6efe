"""Health check and host quota endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ..auth import require_auth
from ..deps import get_reconciler
from ..errors import ShepherdError
from ..services.reconciler import ProjectReconciler
from .projects import to_http_error

router = APIRouter(tags=["health"])


@router.get("/api/health")
def health_check(rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    """Check Gateway health."""
    return {
        "status": "ok",
        "version": "0.1.0",
        "projects": {"total": len(rec.list_project_ids())},
    }


@router.get("/api/quota", dependencies=[Depends(require_auth)])
def get_quota(rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    """Memory quota usage across all projects."""
    try:
        usage = rec.get_quota_usage()
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"quota": usage.model_dump()}
