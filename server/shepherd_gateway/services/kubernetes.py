"""Kubernetes client: one namespace and one ``k8s/<id>.yaml`` per project.

The YAML is written with an image placeholder; ``shepherd-build`` and
``shepherd-apply`` substitute the actual image when applying it.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

import yaml

from ..errors import ClusterError
from ..models.project import Project, ResourcesUsage

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER = "<<IMAGE_AND_HASH>>"
APPLY_SCRIPT = "/opt/shepherd/shepherd-apply"
KUBECTL_TIMEOUT = 60

Runner = Callable[..., subprocess.CompletedProcess]


class ClusterClient(Protocol):
    def write_config_yaml_file(self, project: Project) -> bool: ...

    def delete_if_exists(self, project_id: str) -> None: ...

    def get_current_docker_image(self, project_id: str) -> str | None: ...

    def get_run_logs(self, project_id: str) -> str: ...

    def get_metrics(self, project_id: str) -> ResourcesUsage: ...

    def apply_image_directly(self, project_id: str, image: str) -> None: ...


def namespace_for(project_id: str) -> str:
    return f"shepherd-{project_id}"


def _postgres_documents(namespace: str) -> list[dict[str, Any]]:
    labels = {"app": "postgres-pod"}
    return [
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "postgres-deployment", "namespace": namespace},
            "spec": {
                "selector": {"matchLabels": labels},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "containers": [
                            {
                                "name": "postgres",
                                "image": "postgres:16.2",
                                "ports": [{"containerPort": 5432}],
                                "env": [{"name": "POSTGRES_PASSWORD", "value": "mysecretpassword"}],
                                "resources": {"limits": {"memory": "128Mi", "cpu": "1"}},
                            }
                        ]
                    },
                },
            },
        },
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "postgres-service", "namespace": namespace},
            "spec": {"selector": labels, "ports": [{"port": 5432}]},
        },
    ]


def _ingress(name: str, namespace: str, rules: list[dict], annotations: dict, tls_hosts: list[str]) -> dict[str, Any]:
    spec: dict[str, Any] = {"ingressClassName": "nginx", "rules": rules}
    if tls_hosts:
        spec["tls"] = [{"hosts": tls_hosts, "secretName": f"{name}-tls"}]
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": {"name": name, "namespace": namespace, "annotations": annotations},
        "spec": spec,
    }


def _backend_path(path: str, path_type: str) -> dict[str, Any]:
    return {
        "path": path,
        "pathType": path_type,
        "backend": {"service": {"name": "service", "port": {"number": 8080}}},
    }


def render_config_yaml(project: Project, host_dns: str) -> str:
    """Render every Kubernetes object of the project as multi-document YAML."""
    namespace = namespace_for(project.id)
    resources = project.runtime.resources
    labels = {"app": "main-pod"}

    docs: list[dict[str, Any]] = [
        {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": namespace}},
    ]
    if project.needs_postgres():
        docs.extend(_postgres_documents(namespace))

    docs.append(
        {
            "apiVersion": "apps/v1",
            "kind": "Deployment",
            "metadata": {"name": "deployment", "namespace": namespace},
            "spec": {
                "selector": {"matchLabels": labels},
                "template": {
                    "metadata": {"labels": labels},
                    "spec": {
                        "containers": [
                            {
                                "name": "main",
                                "image": IMAGE_PLACEHOLDER,
                                "ports": [{"containerPort": 8080}],
                                "resources": {
                                    "limits": {
                                        "memory": f"{resources.memory_mb}Mi",
                                        "cpu": f"{resources.cpu:g}",
                                    }
                                },
                                "env": [
                                    {"name": name, "value": value}
                                    for name, value in sorted(project.runtime.env_vars.items())
                                ],
                            }
                        ]
                    },
                },
            },
        }
    )
    docs.append(
        {
            "apiVersion": "v1",
            "kind": "Service",
            "metadata": {"name": "service", "namespace": namespace},
            "spec": {"selector": labels, "ports": [{"port": 8080}]},
        }
    )

    publication = project.publication
    if publication.publish_on_main_domain:
        docs.append(
            _ingress(
                "ingress-main",
                namespace,
                rules=[{"host": host_dns, "http": {"paths": [_backend_path(f"/{project.id}(/|$)(.*)", "ImplementationSpecific")]}}],
                annotations={
                    "nginx.ingress.kubernetes.io/rewrite-target": "/$2",
                    "nginx.ingress.kubernetes.io/use-regex": "true",
                },
                tls_hosts=[],
            )
        )
    domains = sorted(publication.additional_domains)
    if domains:
        annotations = {"cert-manager.io/cluster-issuer": "letsencrypt"} if publication.https else {}
        docs.append(
            _ingress(
                "ingress-custom-domains",
                namespace,
                rules=[{"host": d, "http": {"paths": [_backend_path("/", "Prefix")]}} for d in domains],
                annotations=annotations,
                tls_hosts=domains if publication.https else [],
            )
        )

    return yaml.safe_dump_all(docs, sort_keys=False, default_flow_style=False)


def _parse_cpu(raw: str) -> float:
    if raw.endswith("m"):
        return int(raw[:-1]) / 1000
    return float(raw)


def _parse_memory_mb(raw: str) -> int:
    units = {"Ki": 1 / 1024, "Mi": 1, "Gi": 1024}
    for suffix, factor in units.items():
        if raw.endswith(suffix):
            return int(float(raw[: -len(suffix)]) * factor)
    return int(raw) // (1024 * 1024)


class KubernetesClient:
    """Writes project YAML files and drives ``kubectl``."""

    def __init__(self, k8s_dir: Path, host_dns: str, runner: Runner = subprocess.run) -> None:
        self.k8s_dir = k8s_dir
        self.host_dns = host_dns
        self._runner = runner

    def config_yaml_path(self, project_id: str) -> Path:
        return self.k8s_dir / f"{project_id}.yaml"

    def write_config_yaml_file(self, project: Project) -> bool:
        """Write ``k8s/<id>.yaml``. Returns True if the content changed."""
        self.k8s_dir.mkdir(parents=True, exist_ok=True)
        path = self.config_yaml_path(project.id)
        content = render_config_yaml(project, self.host_dns)
        previous = path.read_text() if path.exists() else None
        if previous == content:
            logger.debug("%s is up to date", path)
            return False
        tmp_path = path.with_suffix(".yaml.tmp")
        tmp_path.write_text(content)
        tmp_path.rename(path)
        logger.info("Wrote %s", path)
        return True

    def delete_if_exists(self, project_id: str) -> None:
        """Remove the project's Kubernetes objects, then its YAML file."""
        path = self.config_yaml_path(project_id)
        if not path.exists():
            logger.debug("No Kubernetes config for %s, nothing to delete", project_id)
            return
        self._kubectl("delete", "--ignore-not-found=true", "-f", str(path))
        path.unlink(missing_ok=True)
        logger.info("Deleted Kubernetes objects of %s", project_id)

    def get_current_docker_image(self, project_id: str) -> str | None:
        """Image of the main pod, or None if the project never ran successfully."""
        result = self._run(
            [
                "kubectl", "get", "deployment", "deployment",
                "-n", namespace_for(project_id),
                "-o", "jsonpath={.spec.template.spec.containers[0].image}",
            ]
        )
        if result.returncode != 0:
            if "NotFound" in result.stderr or "not found" in result.stderr:
                return None
            raise ClusterError(f"kubectl get deployment failed for {project_id}: {result.stderr.strip()}")
        image = result.stdout.strip()
        if not image or image == IMAGE_PLACEHOLDER:
            return None
        return image

    def get_run_logs(self, project_id: str) -> str:
        return self._kubectl("logs", "deployment/deployment", "-n", namespace_for(project_id), "--tail=2000")

    def get_metrics(self, project_id: str) -> ResourcesUsage:
        output = self._kubectl("top", "pod", "-n", namespace_for(project_id), "--no-headers")
        for line in output.splitlines():
            columns = line.split()
            if len(columns) >= 3 and columns[0].startswith("deployment-"):
                return ResourcesUsage(memory_mb=_parse_memory_mb(columns[2]), cpu=_parse_cpu(columns[1]))
        raise ClusterError(f"No metrics for the main pod of {project_id}")

    def apply_image_directly(self, project_id: str, image: str) -> None:
        """Re-apply ``k8s/<id>.yaml`` with an already-built image; no CI involved."""
        result = self._run([APPLY_SCRIPT, project_id, image])
        if result.returncode != 0:
            raise ClusterError(f"{APPLY_SCRIPT} {project_id} failed: {result.stderr.strip()}")
        logger.info("Applied %s to %s", image, project_id)

    # ── Internal ─────────────────────────────────────────────────────────

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            return self._runner(args, capture_output=True, text=True, timeout=KUBECTL_TIMEOUT)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise ClusterError(f"{args[0]} failed: {exc}") from exc

    def _kubectl(self, *args: str) -> str:
        result = self._run(["kubectl", *args])
        if result.returncode != 0:
            raise ClusterError(f"kubectl {' '.join(args)} failed: {result.stderr.strip()}")
        return result.stdout
