"""Shared fixtures: a real file-backed store with in-memory Jenkins and Kubernetes fakes."""

from __future__ import annotations

import os

os.environ.setdefault("SHEPHERD_API_KEY", "test-key")

import pytest  # noqa: E402

from shepherd_gateway.models.builds import BuildRecord, JobOverview  # noqa: E402
from shepherd_gateway.models.host import HostConfig  # noqa: E402
from shepherd_gateway.models.project import Project, ResourcesUsage  # noqa: E402
from shepherd_gateway.services.kubernetes import render_config_yaml  # noqa: E402
from shepherd_gateway.services.project_store import ProjectStore  # noqa: E402
from shepherd_gateway.services.reconciler import ProjectReconciler  # noqa: E402


class FakeCi:
    """Records calls; ``fail_on`` names a method that raises."""

    def __init__(self) -> None:
        self.jobs: dict[str, Project] = {}
        self.builds: list[str] = []
        self.calls: list[str] = []
        self.fail_on: str | None = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"jenkins {name} exploded")

    def create_job(self, project: Project) -> None:
        self._record("create_job")
        if project.id in self.jobs:
            raise RuntimeError(f"job {project.id} already exists")
        self.jobs[project.id] = project

    def update_job(self, project: Project) -> None:
        self._record("update_job")
        self.jobs[project.id] = project

    def delete_job_if_exists(self, project_id: str) -> None:
        self._record("delete_job_if_exists")
        self.jobs.pop(project_id, None)

    def build(self, project_id: str) -> None:
        self._record("build")
        self.builds.append(project_id)

    def get_jobs_overview(self) -> list[JobOverview]:
        return [JobOverview(name=name) for name in self.jobs]

    def get_last_builds(self, project_id: str, count: int = 10) -> list[BuildRecord]:
        return []

    def get_build_log(self, project_id: str, build_number: int) -> str:
        return f"log of {project_id} #{build_number}"


class FakeCluster:
    """Keeps rendered YAML in memory; ``images`` maps project ID to running image."""

    def __init__(self, host_dns: str = "v-herd.eu") -> None:
        self.host_dns = host_dns
        self.configs: dict[str, str] = {}
        self.images: dict[str, str] = {}
        self.applied: list[tuple[str, str]] = []
        self.calls: list[str] = []
        self.fail_on: str | None = None

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"kubectl {name} exploded")

    def write_config_yaml_file(self, project: Project) -> bool:
        self._record("write_config_yaml_file")
        content = render_config_yaml(project, self.host_dns)
        changed = self.configs.get(project.id) != content
        self.configs[project.id] = content
        return changed

    def delete_if_exists(self, project_id: str) -> None:
        self._record("delete_if_exists")
        self.configs.pop(project_id, None)
        self.images.pop(project_id, None)

    def get_current_docker_image(self, project_id: str) -> str | None:
        self._record("get_current_docker_image")
        return self.images.get(project_id)

    def get_run_logs(self, project_id: str) -> str:
        return f"logs of {project_id}"

    def get_metrics(self, project_id: str) -> ResourcesUsage:
        return ResourcesUsage(memory_mb=100, cpu=0.1)

    def apply_image_directly(self, project_id: str, image: str) -> None:
        self._record("apply_image_directly")
        self.applied.append((project_id, image))


@pytest.fixture
def make_project():
    """Factory for valid projects; keyword overrides are camelCase JSON fields."""

    def _make(project_id: str = "vaadin-boot-example", runtime_mb: int = 256, build_mb: int = 1024, **overrides) -> Project:
        data = {
            "id": project_id,
            "description": "Example Vaadin Boot app",
            "gitRepo": {"url": f"https://github.com/mvysny/{project_id}", "branch": "master"},
            "owner": {"name": "Martin Vysny", "email": "mavi@vaadin.com"},
            "runtime": {"resources": {"memoryMb": runtime_mb, "cpu": 1}},
            "build": {"resources": {"memoryMb": build_mb, "cpu": 2}},
        }
        data.update(overrides)
        return Project.model_validate(data)

    return _make


@pytest.fixture
def host() -> HostConfig:
    return HostConfig(memory_quota_mb=4096)


@pytest.fixture
def store(tmp_path) -> ProjectStore:
    return ProjectStore(tmp_path / "projects")


@pytest.fixture
def ci() -> FakeCi:
    return FakeCi()


@pytest.fixture
def cluster() -> FakeCluster:
    return FakeCluster()


@pytest.fixture
def reconciler(store, ci, cluster, host) -> ProjectReconciler:
    return ProjectReconciler(store=store, ci=ci, cluster=cluster, host=host)
