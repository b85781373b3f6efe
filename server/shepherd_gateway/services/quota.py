"""Host memory quota.

The aggregate is never stored: it is recomputed from the descriptors passed in
on every check. Only memory is enforced in aggregate; CPU is time-sliced, so it
is only capped per project.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..errors import ProjectValidationError, QuotaExceededError
from ..models.host import HostConfig, QuotaUsage
from ..models.project import Project

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    admitted: bool
    aggregate_mb: int
    deficit_mb: int = 0


def total_memory_mb(projects: Iterable[Project]) -> int:
    return sum(p.total_memory_mb for p in projects)


def check_admission(
    candidate_total_mb: int,
    existing: Iterable[Project],
    ceiling_mb: int,
    previous_total_mb: int = 0,
) -> QuotaDecision:
    """Decide whether a claim of ``candidate_total_mb`` fits under ``ceiling_mb``.

    On create ``previous_total_mb`` is 0 and ``existing`` holds all other projects.
    On update ``existing`` still holds the old descriptor and ``previous_total_mb``
    is its claim, so only the delta counts. A claim that does not grow is always
    admitted, even on a host that is already over its ceiling.
    """
    current_mb = total_memory_mb(existing)
    delta_mb = candidate_total_mb - previous_total_mb
    aggregate_mb = current_mb + delta_mb
    if delta_mb <= 0 or aggregate_mb <= ceiling_mb:
        return QuotaDecision(admitted=True, aggregate_mb=aggregate_mb)
    return QuotaDecision(admitted=False, aggregate_mb=aggregate_mb, deficit_mb=aggregate_mb - ceiling_mb)


def require_admission(
    candidate_total_mb: int,
    existing: Iterable[Project],
    ceiling_mb: int,
    previous_total_mb: int = 0,
) -> QuotaDecision:
    """Like check_admission() but raises QuotaExceededError on rejection."""
    decision = check_admission(candidate_total_mb, existing, ceiling_mb, previous_total_mb)
    if not decision.admitted:
        logger.info(
            "Quota rejected: aggregate would be %dMb of %dMb (deficit %dMb)",
            decision.aggregate_mb,
            ceiling_mb,
            decision.deficit_mb,
        )
        raise QuotaExceededError(decision.deficit_mb, ceiling_mb)
    return decision


def check_project_limits(project: Project, host: HostConfig) -> None:
    """Per-project maxima, independent of the aggregate quota."""
    runtime = project.runtime.resources
    if not runtime.fits_into(host.max_project_runtime_resources):
        raise ProjectValidationError(
            f"{project.id}: runtime resources {runtime} exceed the per-project maximum "
            f"{host.max_project_runtime_resources}"
        )
    build = project.build.resources
    if not build.fits_into(host.max_project_build_resources):
        raise ProjectValidationError(
            f"{project.id}: build resources {build} exceed the per-project maximum "
            f"{host.max_project_build_resources}"
        )


def quota_usage(projects: list[Project], host: HostConfig) -> QuotaUsage:
    used = total_memory_mb(projects)
    return QuotaUsage(
        used_mb=used,
        ceiling_mb=host.memory_quota_mb,
        headroom_mb=max(host.memory_quota_mb - used, 0),
        project_count=len(projects),
        concurrent_builders=host.concurrent_jenkins_builders,
    )
