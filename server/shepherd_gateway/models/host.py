"""Host-wide limits and quota usage."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .project import Resources


class HostConfig(BaseModel):
    """Contents of ``<shepherd root>/config.json``.

    ``memory_quota_mb`` caps the sum of runtime + build memory of all projects;
    the per-project maxima cap each single project independently.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    memory_quota_mb: int = Field(default=14336, gt=0)
    concurrent_jenkins_builders: int = Field(default=2, ge=1)
    max_project_runtime_resources: Resources = Resources(memory_mb=1024, cpu=1.0)
    max_project_build_resources: Resources = Resources(memory_mb=2048, cpu=2.0)
    host_dns: str = "v-herd.eu"


class QuotaUsage(BaseModel):
    used_mb: int
    ceiling_mb: int
    headroom_mb: int
    project_count: int
    concurrent_builders: int
