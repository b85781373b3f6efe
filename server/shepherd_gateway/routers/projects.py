"""Project management endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import require_auth
from ..deps import get_reconciler
from ..errors import (
    CiError,
    ClusterError,
    CorruptedProjectError,
    ImmutableFieldError,
    PartialFailureError,
    ProjectAlreadyExistsError,
    ProjectNotFoundError,
    ProjectValidationError,
    QuotaExceededError,
    ShepherdError,
)
from ..models.project import Project
from ..services.reconciler import ProjectReconciler

router = APIRouter(prefix="/api/projects", tags=["projects"], dependencies=[Depends(require_auth)])

_STATUS_CODES: list[tuple[type[ShepherdError], int]] = [
    (ProjectValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ImmutableFieldError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ProjectNotFoundError, status.HTTP_404_NOT_FOUND),
    (ProjectAlreadyExistsError, status.HTTP_409_CONFLICT),
    (QuotaExceededError, status.HTTP_409_CONFLICT),
    (PartialFailureError, status.HTTP_502_BAD_GATEWAY),
    (CiError, status.HTTP_502_BAD_GATEWAY),
    (ClusterError, status.HTTP_502_BAD_GATEWAY),
    (CorruptedProjectError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def to_http_error(exc: ShepherdError) -> HTTPException:
    """Map a gateway error to an HTTP error carrying its message."""
    code = next((c for t, c in _STATUS_CODES if isinstance(exc, t)), status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail: dict = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, QuotaExceededError):
        detail["deficitMb"] = exc.deficit_mb
    elif isinstance(exc, PartialFailureError):
        detail["completed"] = exc.completed
        detail["failedStep"] = exc.failed_step
        if exc.remaining:
            detail["remaining"] = exc.remaining
    return HTTPException(status_code=code, detail=detail)


def _dump(project: Project) -> dict:
    return project.model_dump(mode="json", by_alias=True)


@router.get("")
def list_projects(
    owner: str | None = Query(None, description="Only projects owned by this e-mail"),
    rec: ProjectReconciler = Depends(get_reconciler),
) -> dict:
    """List all projects with the result of their last build."""
    try:
        views = rec.get_all_projects(owner_email=owner)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {
        "projects": [
            {
                "project": _dump(v.project),
                "lastBuildResult": v.last_build_result.value,
                "lastBuildTimestamp": v.last_build_timestamp.isoformat() if v.last_build_timestamp else None,
            }
            for v in views
        ]
    }


@router.post("", status_code=status.HTTP_201_CREATED)
def create_project(project: Project, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    """Create a project and trigger its first build."""
    try:
        rec.create_project(project)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"project": _dump(project)}


@router.get("/{project_id}")
def get_project(project_id: str, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    try:
        project = rec.get_project(project_id)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"project": _dump(project)}


@router.put("/{project_id}")
def update_project(project_id: str, project: Project, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    """Replace the project descriptor and redeploy as little as needed."""
    if project.id != project_id:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Project ID in the body ({project.id}) does not match the URL ({project_id})",
        )
    try:
        outcome = rec.update_project(project)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"project": _dump(project), "outcome": outcome.value}


@router.delete("/{project_id}")
def delete_project(project_id: str, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    """Delete the project from Jenkins, Kubernetes and the descriptor store."""
    try:
        rec.delete_project(project_id)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"deleted": project_id}


@router.get("/{project_id}/logs")
def get_logs(project_id: str, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    try:
        return {"logs": rec.get_run_logs(project_id)}
    except ShepherdError as exc:
        raise to_http_error(exc) from exc


@router.get("/{project_id}/metrics")
def get_metrics(project_id: str, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    try:
        usage = rec.get_run_metrics(project_id)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"metrics": usage.model_dump(by_alias=True)}


@router.get("/{project_id}/builds")
def get_builds(
    project_id: str,
    count: int = Query(10, ge=1, le=100),
    rec: ProjectReconciler = Depends(get_reconciler),
) -> dict:
    try:
        builds = rec.get_last_builds(project_id, count)
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
    return {"builds": [b.model_dump(mode="json") for b in builds]}


@router.get("/{project_id}/builds/{build_number}/log")
def get_build_log(project_id: str, build_number: int, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    try:
        return {"log": rec.get_build_log(project_id, build_number)}
    except ShepherdError as exc:
        raise to_http_error(exc) from exc


@router.get("/{project_id}/urls")
def get_urls(project_id: str, rec: ProjectReconciler = Depends(get_reconciler)) -> dict:
    try:
        return {"urls": rec.get_published_urls(project_id)}
    except ShepherdError as exc:
        raise to_http_error(exc) from exc
