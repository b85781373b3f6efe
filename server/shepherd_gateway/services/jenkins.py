"""Jenkins client: one freestyle job per project, named after the project ID."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Protocol
from xml.sax.saxutils import escape

import httpx

from ..errors import CiError
from ..models.builds import BuildRecord, BuildResult, JobOverview, LastBuild
from ..models.project import Project

logger = logging.getLogger(__name__)

# Number of builds returned by get_last_builds() unless asked otherwise
DEFAULT_LAST_BUILDS = 10


class CiClient(Protocol):
    def create_job(self, project: Project) -> None: ...

    def update_job(self, project: Project) -> None: ...

    def delete_job_if_exists(self, project_id: str) -> None: ...

    def build(self, project_id: str) -> None: ...

    def get_jobs_overview(self) -> list[JobOverview]: ...

    def get_last_builds(self, project_id: str, count: int = DEFAULT_LAST_BUILDS) -> list[BuildRecord]: ...

    def get_build_log(self, project_id: str, build_number: int) -> str: ...


def _millis_to_datetime(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)


def _parse_result(raw: str | None, building: bool = False) -> BuildResult:
    # Jenkins reports result=null while a build is running
    if raw is None or building:
        return BuildResult.BUILDING
    return BuildResult(raw)


def build_shell_command(project: Project) -> str:
    """The shell builder step handed to ``shepherd-build``."""
    resources = project.build.resources
    lines = [
        f"export BUILD_MEMORY={resources.memory_mb}m",
        f"export CPU_QUOTA={int(resources.cpu * 100000)}",
    ]
    if project.build.build_args:
        args = " ".join(f'--build-arg {name}="{value}"' for name, value in sorted(project.build.build_args.items()))
        lines.append(f"export BUILD_ARGS='{args}'")
    if project.build.docker_file:
        lines.append(f"export DOCKERFILE={project.build.docker_file}")
    lines.append(f"/opt/shepherd/shepherd-build {project.id}")
    return "\n".join(lines)


def job_config_xml(project: Project, notify_email: str = "") -> str:
    """Render the Jenkins ``config.xml`` of the project's job."""
    recipients = " ".join(sorted({e for e in (notify_email, project.owner.email) if e}))
    credentials = ""
    if project.git_repo.credentials_id:
        credentials = f"\n        <credentialsId>{escape(project.git_repo.credentials_id)}</credentialsId>"
    description = f"{project.description}. Web page: {project.git_repo.url}. Owner: {project.owner}"
    return f"""<?xml version='1.1' encoding='UTF-8'?>
<project>
  <actions/>
  <description>{escape(description)}</description>
  <keepDependencies>false</keepDependencies>
  <properties>
    <jenkins.model.BuildDiscarderProperty>
      <strategy class="hudson.tasks.LogRotator">
        <daysToKeep>3</daysToKeep>
        <numToKeep>-1</numToKeep>
        <artifactDaysToKeep>-1</artifactDaysToKeep>
        <artifactNumToKeep>-1</artifactNumToKeep>
      </strategy>
    </jenkins.model.BuildDiscarderProperty>
  </properties>
  <scm class="hudson.plugins.git.GitSCM" plugin="git">
    <configVersion>2</configVersion>
    <userRemoteConfigs>
      <hudson.plugins.git.UserRemoteConfig>
        <url>{escape(project.git_repo.url)}</url>{credentials}
      </hudson.plugins.git.UserRemoteConfig>
    </userRemoteConfigs>
    <branches>
      <hudson.plugins.git.BranchSpec>
        <name>*/{escape(project.git_repo.branch)}</name>
      </hudson.plugins.git.BranchSpec>
    </branches>
    <doGenerateSubmoduleConfigurations>false</doGenerateSubmoduleConfigurations>
    <submoduleCfg class="empty-list"/>
    <extensions/>
  </scm>
  <canRoam>true</canRoam>
  <disabled>false</disabled>
  <blockBuildWhenDownstreamBuilding>false</blockBuildWhenDownstreamBuilding>
  <blockBuildWhenUpstreamBuilding>false</blockBuildWhenUpstreamBuilding>
  <triggers>
    <hudson.triggers.SCMTrigger>
      <spec>H/5 * * * *</spec>
      <ignorePostCommitHooks>false</ignorePostCommitHooks>
    </hudson.triggers.SCMTrigger>
  </triggers>
  <concurrentBuild>false</concurrentBuild>
  <builders>
    <hudson.tasks.Shell>
      <command>{escape(build_shell_command(project))}</command>
      <configuredLocalRules/>
    </hudson.tasks.Shell>
  </builders>
  <publishers>
    <hudson.tasks.Mailer plugin="mailer">
      <recipients>{escape(recipients)}</recipients>
      <dontNotifyEveryUnstableBuild>false</dontNotifyEveryUnstableBuild>
      <sendToIndividuals>false</sendToIndividuals>
    </hudson.tasks.Mailer>
  </publishers>
  <buildWrappers>
    <hudson.plugins.timestamper.TimestamperBuildWrapper plugin="timestamper"/>
    <hudson.plugins.build__timeout.BuildTimeoutWrapper plugin="build-timeout">
      <strategy class="hudson.plugins.build_timeout.impl.AbsoluteTimeOutStrategy">
        <timeoutMinutes>15</timeoutMinutes>
      </strategy>
      <operationList/>
    </hudson.plugins.build__timeout.BuildTimeoutWrapper>
  </buildWrappers>
</project>
"""


class JenkinsClient:
    """Talks to the Jenkins REST API with an API token (no CSRF crumb needed)."""

    def __init__(
        self,
        base_url: str,
        user: str,
        token: str,
        notify_email: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.notify_email = notify_email
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            auth=(user, token),
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ── Jobs ─────────────────────────────────────────────────────────────

    def create_job(self, project: Project) -> None:
        """Create the project's job. Fails with CiError if the job already exists."""
        self._post(
            "/createItem",
            params={"name": project.id},
            content=job_config_xml(project, self.notify_email),
            headers={"Content-Type": "application/xml"},
        )
        logger.info("Created Jenkins job %s", project.id)

    def update_job(self, project: Project) -> None:
        self._post(
            f"/job/{project.id}/config.xml",
            content=job_config_xml(project, self.notify_email),
            headers={"Content-Type": "application/xml"},
        )
        logger.info("Updated Jenkins job %s", project.id)

    def delete_job_if_exists(self, project_id: str) -> None:
        response = self._request("POST", f"/job/{project_id}/doDelete")
        if response.status_code == 404:
            logger.debug("Jenkins job %s does not exist, nothing to delete", project_id)
            return
        self._raise_for_status(response)
        logger.info("Deleted Jenkins job %s", project_id)

    def build(self, project_id: str) -> None:
        """Queue a build of the project's job."""
        self._post(f"/job/{project_id}/build")
        logger.info("Triggered Jenkins build of %s", project_id)

    # ── Queries ──────────────────────────────────────────────────────────

    def get_jobs_overview(self) -> list[JobOverview]:
        data = self._get_json("/api/json", params={"tree": "jobs[name,lastBuild[number,result,timestamp,building]]"})
        jobs = []
        for job in data.get("jobs", []):
            last = job.get("lastBuild")
            last_build = None
            if last:
                last_build = LastBuild(
                    number=last["number"],
                    result=_parse_result(last.get("result"), last.get("building", False)),
                    timestamp=_millis_to_datetime(last["timestamp"]),
                )
            jobs.append(JobOverview(name=job["name"], last_build=last_build))
        return jobs

    def get_last_builds(self, project_id: str, count: int = DEFAULT_LAST_BUILDS) -> list[BuildRecord]:
        tree = f"builds[number,duration,estimatedDuration,timestamp,result,building]{{0,{count}}}"
        data = self._get_json(f"/job/{project_id}/api/json", params={"tree": tree})
        return [
            BuildRecord(
                number=b["number"],
                duration=timedelta(milliseconds=b.get("duration", 0)),
                estimated_duration=timedelta(milliseconds=b.get("estimatedDuration", 0)),
                started_at=_millis_to_datetime(b["timestamp"]),
                result=_parse_result(b.get("result"), b.get("building", False)),
            )
            for b in data.get("builds", [])
        ]

    def get_build_log(self, project_id: str, build_number: int) -> str:
        response = self._request("GET", f"/job/{project_id}/{build_number}/consoleText")
        self._raise_for_status(response)
        return response.text

    # ── Internal ─────────────────────────────────────────────────────────

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise CiError(f"Jenkins {method} {url} failed: {exc}") from exc

    def _post(self, url: str, **kwargs) -> httpx.Response:
        response = self._request("POST", url, **kwargs)
        self._raise_for_status(response)
        return response

    def _get_json(self, url: str, **kwargs) -> dict:
        response = self._request("GET", url, **kwargs)
        self._raise_for_status(response)
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.is_error:
            detail = response.headers.get("X-Error") or response.text[:200]
            raise CiError(
                f"Jenkins {response.request.method} {response.request.url.path} "
                f"returned {response.status_code}: {detail}"
            )
