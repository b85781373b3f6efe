"""Tests for the host memory quota."""

from __future__ import annotations

import pytest

from shepherd_gateway.errors import ProjectValidationError, QuotaExceededError
from shepherd_gateway.models.host import HostConfig
from shepherd_gateway.models.project import Resources
from shepherd_gateway.services.quota import (
    check_admission,
    check_project_limits,
    quota_usage,
    require_admission,
    total_memory_mb,
)


def test_create_over_ceiling_reports_deficit(make_project):
    existing = [make_project("a", runtime_mb=400, build_mb=500)]  # 900Mb
    decision = check_admission(50 + 100, existing, ceiling_mb=1000)
    assert not decision.admitted
    assert decision.deficit_mb == 50
    assert decision.aggregate_mb == 1050


def test_create_exactly_at_ceiling_is_admitted(make_project):
    existing = [make_project("a", runtime_mb=400, build_mb=500)]
    assert check_admission(100, existing, ceiling_mb=1000).admitted


class TestFullHost:
    """The aggregate already equals the ceiling."""

    @pytest.fixture
    def existing(self, make_project):
        return [make_project("a", runtime_mb=200, build_mb=300), make_project("b", runtime_mb=200, build_mb=300)]

    def test_any_new_claim_is_rejected(self, existing):
        decision = check_admission(64, existing, ceiling_mb=1000)
        assert not decision.admitted
        assert decision.deficit_mb == 64

    def test_growing_update_is_rejected(self, existing):
        decision = check_admission(501, existing, ceiling_mb=1000, previous_total_mb=500)
        assert not decision.admitted
        assert decision.deficit_mb == 1

    def test_unchanged_update_is_admitted(self, existing):
        assert check_admission(500, existing, ceiling_mb=1000, previous_total_mb=500).admitted

    def test_shrinking_update_is_admitted(self, existing):
        decision = check_admission(300, existing, ceiling_mb=1000, previous_total_mb=500)
        assert decision.admitted
        assert decision.aggregate_mb == 800


def test_shrinking_update_admitted_on_overcommitted_host(make_project):
    # e.g. the ceiling was lowered after the projects were created
    existing = [make_project("a", runtime_mb=1024, build_mb=2048)]
    assert check_admission(2048, existing, ceiling_mb=1000, previous_total_mb=3072).admitted


def test_require_admission_raises(make_project):
    with pytest.raises(QuotaExceededError) as exc_info:
        require_admission(2000, [make_project("a")], ceiling_mb=2048)
    assert exc_info.value.deficit_mb == 256 + 1024 + 2000 - 2048
    assert "2048Mb" in str(exc_info.value)


def test_cpu_is_not_aggregated(make_project):
    existing = [make_project(f"p{i}") for i in range(10)]  # 20 build cpus in total
    assert check_admission(100, existing, ceiling_mb=100_000).admitted


class TestProjectLimits:
    @pytest.fixture
    def host(self):
        return HostConfig(
            max_project_runtime_resources=Resources(memory_mb=512, cpu=1),
            max_project_build_resources=Resources(memory_mb=1024, cpu=2),
        )

    def test_within_limits(self, make_project, host):
        check_project_limits(make_project(runtime_mb=512, build_mb=1024), host)

    def test_runtime_memory_over_limit(self, make_project, host):
        with pytest.raises(ProjectValidationError, match="runtime resources"):
            check_project_limits(make_project(runtime_mb=513), host)

    def test_build_cpu_over_limit(self, make_project, host):
        project = make_project(build={"resources": {"memoryMb": 512, "cpu": 4}})
        with pytest.raises(ProjectValidationError, match="build resources"):
            check_project_limits(project, host)


def test_quota_usage(make_project):
    projects = [make_project("a", runtime_mb=256, build_mb=1024), make_project("b", runtime_mb=128, build_mb=512)]
    usage = quota_usage(projects, HostConfig(memory_quota_mb=2000, concurrent_jenkins_builders=3))
    assert total_memory_mb(projects) == 1920
    assert usage.used_mb == 1920
    assert usage.headroom_mb == 80
    assert usage.project_count == 2
    assert usage.concurrent_builders == 3
