"""FastAPI dependencies."""

from __future__ import annotations

from .app_state import get_state
from .services.reconciler import ProjectReconciler


async def get_reconciler() -> ProjectReconciler:
    """Resolve the process-wide reconciler."""
    return get_state().reconciler
