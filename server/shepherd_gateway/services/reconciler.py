"""Reconciler: keeps descriptor, Jenkins job and Kubernetes deployment in agreement.

Create, update and delete are non-atomic pipelines across three stores. The
quota check and the descriptor write happen inside the store lock; the Jenkins
and Kubernetes steps run afterwards and a failure there is reported as a
PartialFailureError naming the steps that already took effect. Re-running the
same operation is the retry: an update records the redeploy it owes before the
descriptor changes and clears it only once the build or apply was issued.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from ..errors import ImmutableFieldError, PartialFailureError, ProjectValidationError
from ..models.builds import BuildRecord, BuildResult
from ..models.host import HostConfig, QuotaUsage
from ..models.project import Project, ProjectView, ResourcesUsage, validate_project_id
from .jenkins import DEFAULT_LAST_BUILDS, CiClient
from .kubernetes import ClusterClient
from .project_store import ProjectStore
from .quota import check_project_limits, quota_usage, require_admission

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ChangeKind(str, Enum):
    """What a descriptor change requires, in increasing order of cost."""

    NONE = "none"
    CLUSTER_CONFIG = "cluster_config"
    REBUILD = "rebuild"


class UpdateOutcome(str, Enum):
    NO_OP = "no_op"
    QUICK_APPLY = "quick_apply"
    FULL_BUILD = "full_build"


# Every descriptor field belongs to exactly one bucket. A path covers the whole
# subtree below it; tests check that no field of Project is left out.
FIELD_CHANGE_KINDS: dict[tuple[str, ...], ChangeKind] = {
    ("id",): ChangeKind.NONE,
    ("description",): ChangeKind.NONE,
    ("owner",): ChangeKind.NONE,
    ("git_repo",): ChangeKind.REBUILD,
    ("build",): ChangeKind.REBUILD,
    ("runtime", "env_vars"): ChangeKind.REBUILD,
    ("runtime", "resources"): ChangeKind.CLUSTER_CONFIG,
    ("publication",): ChangeKind.CLUSTER_CONFIG,
    ("additional_services",): ChangeKind.CLUSTER_CONFIG,
}

_COST = {ChangeKind.NONE: 0, ChangeKind.CLUSTER_CONFIG: 1, ChangeKind.REBUILD: 2}


def _lookup(project: Project, path: tuple[str, ...]) -> Any:
    value: Any = project
    for name in path:
        value = getattr(value, name)
    return value


def changed_fields(old: Project, new: Project) -> list[tuple[str, ...]]:
    return [path for path in FIELD_CHANGE_KINDS if _lookup(old, path) != _lookup(new, path)]


def costliest(*kinds: ChangeKind) -> ChangeKind:
    return max(kinds, key=_COST.__getitem__, default=ChangeKind.NONE)


def classify_change(old: Project, new: Project) -> ChangeKind:
    """The most expensive kind among all fields that differ."""
    return costliest(*(FIELD_CHANGE_KINDS[path] for path in changed_fields(old, new)))


def needs_project_rebuild(new: Project, old: Project) -> bool:
    return classify_change(old, new) == ChangeKind.REBUILD


def decide_update(
    old: Project,
    new: Project,
    current_image: str | None,
    config_changed: bool,
    pending: ChangeKind = ChangeKind.NONE,
) -> UpdateOutcome:
    """Pick the cheapest action that brings the running project up to date.

    ``pending`` is the redeploy an earlier, failed update of the same project
    still owes; it escalates the decision but never lowers it.
    """
    if current_image is None:
        # nothing has been deployed yet; there is no image to quick-apply
        return UpdateOutcome.FULL_BUILD
    if needs_project_rebuild(new, old) or pending == ChangeKind.REBUILD:
        return UpdateOutcome.FULL_BUILD
    if config_changed or pending == ChangeKind.CLUSTER_CONFIG:
        return UpdateOutcome.QUICK_APPLY
    return UpdateOutcome.NO_OP


class _Steps:
    """Runs pipeline steps, turning the first failure into a PartialFailureError."""

    def __init__(
        self,
        project_id: str,
        operation: str,
        completed: list[str] | None = None,
        holders: list[str] | None = None,
    ) -> None:
        self.project_id = project_id
        self.operation = operation
        self.completed = list(completed or [])
        # stores that hold the project until their step completes
        self.holders = list(holders or [])

    def run(self, name: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            result = fn(*args)
        except Exception as exc:
            logger.error("%s of %s failed at '%s': %s", self.operation, self.project_id, name, exc)
            remaining = [h for h in self.holders if h not in self.completed]
            raise PartialFailureError(
                self.project_id, self.operation, self.completed, name, exc, remaining=remaining
            ) from exc
        self.completed.append(name)
        return result


def require_valid_id(project_id: str) -> str:
    try:
        return validate_project_id(project_id)
    except ValueError as exc:
        raise ProjectValidationError(str(exc)) from None


class ProjectReconciler:
    """Creates, updates and deletes projects across the three stores."""

    def __init__(self, store: ProjectStore, ci: CiClient, cluster: ClusterClient, host: HostConfig) -> None:
        self.store = store
        self.ci = ci
        self.cluster = cluster
        self.host = host

    # ── Validation ───────────────────────────────────────────────────────

    def validate(self, project: Project) -> None:
        """Checks that need no I/O: per-project maxima and publication domains."""
        check_project_limits(project, self.host)
        if self.host.host_dns in project.publication.additional_domains:
            raise ProjectValidationError(
                f"{project.id}: additional domains must not contain the main domain {self.host.host_dns}"
            )

    # ── Create / update / delete ─────────────────────────────────────────

    def create_project(self, project: Project) -> None:
        self.validate(project)

        with self.store.locked():
            self.store.require_not_exists(project.id)
            decision = require_admission(project.total_memory_mb, self.store.get_all(), self.host.memory_quota_mb)
            self.store.put(project)
        logger.info(
            "%s: created descriptor, quota now %dMb of %dMb",
            project.id,
            decision.aggregate_mb,
            self.host.memory_quota_mb,
        )

        steps = _Steps(project.id, "create", completed=["descriptor"])
        steps.run("kubernetes config", self.cluster.write_config_yaml_file, project)
        steps.run("jenkins job", self.ci.create_job, project)
        # nothing is deployed yet, so a build is always needed
        steps.run("initial build", self.ci.build, project.id)
        logger.info("%s: created, initial build triggered", project.id)

    def update_project(self, project: Project) -> UpdateOutcome:
        self.validate(project)

        with self.store.locked():
            old = self.store.get(project.id)
            if old.git_repo != project.git_repo:
                raise ImmutableFieldError("gitRepo", old.git_repo, project.git_repo)
            require_admission(
                project.total_memory_mb,
                self.store.get_all(),
                self.host.memory_quota_mb,
                previous_total_mb=old.total_memory_mb,
            )
            pending = ChangeKind(self.store.get_pending(project.id) or ChangeKind.NONE)
            owed = costliest(pending, classify_change(old, project))
            if owed != ChangeKind.NONE:
                self.store.set_pending(project.id, owed.value)
            self.store.put(project)
        if pending != ChangeKind.NONE:
            logger.info("%s: an earlier update left a %s pending", project.id, pending.value)

        steps = _Steps(project.id, "update", completed=["descriptor"])
        config_changed = steps.run("kubernetes config", self.cluster.write_config_yaml_file, project)
        if config_changed and owed == ChangeKind.NONE:
            owed = ChangeKind.CLUSTER_CONFIG
            self.store.set_pending(project.id, owed.value)
        steps.run("jenkins job", self.ci.update_job, project)
        current_image = steps.run("read deployed image", self.cluster.get_current_docker_image, project.id)

        outcome = decide_update(old, project, current_image, config_changed, pending=pending)
        if outcome == UpdateOutcome.FULL_BUILD:
            if current_image is None:
                logger.info("%s: isn't running yet, no build has completed successfully; building", project.id)
            else:
                logger.info("%s: needs full rebuild on Jenkins (changed: %s)", project.id, changed_fields(old, project))
            steps.run("build", self.ci.build, project.id)
        elif outcome == UpdateOutcome.QUICK_APPLY:
            logger.info("%s: performing quick kubernetes apply of %s", project.id, current_image)
            steps.run("quick apply", self.cluster.apply_image_directly, project.id, current_image)
        else:
            logger.info("%s: no kubernetes-level/jenkins-level changes detected, not reloading the project", project.id)
        self.store.clear_pending(project.id)
        return outcome

    def delete_project(self, project_id: str) -> None:
        """Remove the project from every store; safe to call repeatedly.

        The descriptor goes last so a project whose delete failed halfway is
        still listed and can be deleted again.
        """
        require_valid_id(project_id)
        steps = _Steps(project_id, "delete", holders=["jenkins job", "kubernetes", "descriptor"])
        steps.run("jenkins job", self.ci.delete_job_if_exists, project_id)
        steps.run("kubernetes", self.cluster.delete_if_exists, project_id)
        steps.run("descriptor", self.store.delete_if_exists, project_id)
        logger.info("%s: deleted", project_id)

    # ── Queries ──────────────────────────────────────────────────────────

    def list_project_ids(self) -> list[str]:
        return self.store.list_ids()

    def get_project(self, project_id: str) -> Project:
        return self.store.get(require_valid_id(project_id))

    def get_all_projects(self, owner_email: str | None = None) -> list[ProjectView]:
        projects = self.store.get_all()
        if owner_email is not None:
            projects = [p for p in projects if p.owner.email == owner_email]
        jobs = {job.name: job for job in self.ci.get_jobs_overview()}
        views = []
        for project in projects:
            job = jobs.get(project.id)
            last_build = job.last_build if job else None
            views.append(
                ProjectView(
                    project=project,
                    last_build_result=last_build.result if last_build else BuildResult.NOT_BUILT,
                    last_build_timestamp=last_build.timestamp if last_build else None,
                )
            )
        return views

    def get_run_logs(self, project_id: str) -> str:
        self.get_project(project_id)
        return self.cluster.get_run_logs(project_id)

    def get_run_metrics(self, project_id: str) -> ResourcesUsage:
        self.get_project(project_id)
        return self.cluster.get_metrics(project_id)

    def get_last_builds(self, project_id: str, count: int = DEFAULT_LAST_BUILDS) -> list[BuildRecord]:
        self.get_project(project_id)
        return self.ci.get_last_builds(project_id, count)

    def get_build_log(self, project_id: str, build_number: int) -> str:
        self.get_project(project_id)
        return self.ci.get_build_log(project_id, build_number)

    def get_published_urls(self, project_id: str) -> list[str]:
        return self.get_project(project_id).get_published_urls(self.host.host_dns)

    def get_quota_usage(self) -> QuotaUsage:
        return quota_usage(self.store.get_all(), self.host)
