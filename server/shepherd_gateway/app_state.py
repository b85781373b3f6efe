"""Process-wide gateway state: host limits and the reconciler with its adapters.

Host limits are loaded once at startup and never re-read.
"""

from __future__ import annotations

import logging

from .config import GatewayConfig, load_host_config
from .models.host import HostConfig
from .services.jenkins import JenkinsClient
from .services.kubernetes import KubernetesClient
from .services.project_store import ProjectStore
from .services.reconciler import ProjectReconciler

logger = logging.getLogger(__name__)


class GatewayState:
    """Holds the reconciler and the clients it was built from."""

    def __init__(self, reconciler: ProjectReconciler, jenkins: JenkinsClient | None = None) -> None:
        self.reconciler = reconciler
        self._jenkins = jenkins

    @property
    def host(self) -> HostConfig:
        return self.reconciler.host

    @classmethod
    def from_config(cls, cfg: GatewayConfig) -> GatewayState:
        host = load_host_config(cfg.host_config_path)
        jenkins = JenkinsClient(
            cfg.jenkins_url,
            cfg.jenkins_user,
            cfg.jenkins_token,
            notify_email=cfg.notify_email,
            timeout=cfg.jenkins_timeout,
        )
        reconciler = ProjectReconciler(
            store=ProjectStore(cfg.projects_dir),
            ci=jenkins,
            cluster=KubernetesClient(cfg.k8s_dir, host.host_dns),
            host=host,
        )
        logger.info(
            "Gateway state ready: root %s, quota %dMb, %d concurrent builders",
            cfg.shepherd_root,
            host.memory_quota_mb,
            host.concurrent_jenkins_builders,
        )
        return cls(reconciler, jenkins)

    def close(self) -> None:
        if self._jenkins is not None:
            self._jenkins.close()


# Module-level singleton, set up by the app lifespan (or by tests)
_state: GatewayState | None = None


def set_state(state: GatewayState | None) -> None:
    global _state
    _state = state


def get_state() -> GatewayState:
    """Get the active state. Raises RuntimeError before startup."""
    if _state is None:
        raise RuntimeError("Gateway state is not initialized")
    return _state
