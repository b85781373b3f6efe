"""Project descriptor models.

The descriptor is persisted as camelCase JSON (``projects/<id>.json``), so every
model here uses a camelCase alias generator while Python code works with the
snake_case field names.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .builds import BuildResult

_PROJECT_ID_RE = re.compile(r"[a-z0-9][a-z0-9\-]{0,52}[a-z0-9]")


def validate_project_id(value: str) -> str:
    """Return ``value`` if it is a well-formed project ID, raise ValueError otherwise."""
    if not _PROJECT_ID_RE.fullmatch(value):
        raise ValueError(
            f"Invalid project ID {value!r}: the ID must contain at most 54 characters, "
            "only lowercase alphanumeric characters or '-', and must start and end "
            "with an alphanumeric character"
        )
    return value


ProjectId = Annotated[str, AfterValidator(validate_project_id)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Resources(_CamelModel):
    """Memory and CPU claim. ``cpu=1`` means one full core."""

    memory_mb: int = Field(ge=32)
    cpu: float = Field(gt=0)

    def fits_into(self, limit: Resources) -> bool:
        return self.memory_mb <= limit.memory_mb and self.cpu <= limit.cpu

    def __str__(self) -> str:
        return f"{self.memory_mb}Mb/{self.cpu:g}cpu"


DEFAULT_RUNTIME_RESOURCES = Resources(memory_mb=256, cpu=1.0)
DEFAULT_BUILD_RESOURCES = Resources(memory_mb=2048, cpu=2.0)


class ResourcesUsage(_CamelModel):
    """Live usage of the main pod, as reported by the cluster."""

    memory_mb: int
    cpu: float


class ProjectOwner(_CamelModel):
    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


class GitRepo(_CamelModel):
    url: str
    branch: str
    credentials_id: str | None = None  # Jenkins credentials reference, for private repos

    def __str__(self) -> str:
        return f"{self.url}@{self.branch}"


class ProjectRuntime(_CamelModel):
    resources: Resources = DEFAULT_RUNTIME_RESOURCES
    env_vars: dict[str, str] = Field(default_factory=dict)


class BuildSpec(_CamelModel):
    """How the project is built.

    ``resources`` are passed to ``shepherd-build`` as ``BUILD_MEMORY``/``CPU_QUOTA``,
    ``build_args`` as ``--build-arg`` flags via ``BUILD_ARGS``, and ``docker_file``
    (when set) replaces the default ``Dockerfile`` via ``DOCKERFILE``.
    """

    resources: Resources = DEFAULT_BUILD_RESOURCES
    build_args: dict[str, str] = Field(default_factory=dict)
    docker_file: str | None = None


class Publication(_CamelModel):
    """Where the project is published.

    ``https`` only affects ``additional_domains``; the main domain is always https.
    """

    publish_on_main_domain: bool = True
    https: bool = True
    additional_domains: set[str] = Field(default_factory=set)

    @field_validator("additional_domains")
    @classmethod
    def _check_domains(cls, domains: set[str]) -> set[str]:
        for domain in domains:
            if not domain or "/" in domain or domain != domain.strip():
                raise ValueError(f"Invalid domain name: {domain!r}")
        return domains

    @field_serializer("additional_domains")
    def _sorted_domains(self, domains: set[str]) -> list[str]:
        return sorted(domains)


class ServiceType(str, Enum):
    # PostgreSQL reachable only by the project at postgres-service:5432,
    # user postgres, password mysecretpassword.
    POSTGRES = "Postgres"


class Service(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    type: ServiceType


class Project(_CamelModel):
    """A hosted project: identity, source, runtime, build and publication."""

    id: ProjectId
    description: str
    git_repo: GitRepo
    owner: ProjectOwner
    runtime: ProjectRuntime = Field(default_factory=ProjectRuntime)
    build: BuildSpec = Field(default_factory=BuildSpec)
    publication: Publication = Field(default_factory=Publication)
    additional_services: set[Service] = Field(default_factory=set)

    @field_serializer("additional_services")
    def _sorted_services(self, services: set[Service]) -> list[Service]:
        return sorted(services, key=lambda s: s.type.value)

    @property
    def total_memory_mb(self) -> int:
        """Memory claimed against the host quota: runtime plus build."""
        return self.runtime.resources.memory_mb + self.build.resources.memory_mb

    def needs_postgres(self) -> bool:
        return any(s.type == ServiceType.POSTGRES for s in self.additional_services)

    def get_published_urls(self, host: str) -> list[str]:
        """URLs the project can be browsed at, e.g. ``https://v-herd.eu/my-project``."""
        urls = []
        if self.publication.publish_on_main_domain:
            urls.append(f"https://{host}/{self.id}")
        scheme = "https" if self.publication.https else "http"
        urls.extend(f"{scheme}://{d}" for d in sorted(self.publication.additional_domains))
        return urls

    def to_json(self, pretty: bool = True) -> str:
        return self.model_dump_json(by_alias=True, indent=2 if pretty else None)

    @classmethod
    def from_json(cls, text: str | bytes) -> Project:
        return cls.model_validate_json(text)


class ProjectView(BaseModel):
    """A project joined with the outcome of its last CI build."""

    project: Project
    last_build_result: BuildResult = BuildResult.NOT_BUILT
    last_build_timestamp: datetime | None = None
