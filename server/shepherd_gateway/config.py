"""Environment-based configuration for the Shepherd Gateway."""

from __future__ import annotations

import json
import logging
import os
import secrets
from pathlib import Path

from pydantic import ValidationError

from .models.host import HostConfig

logger = logging.getLogger(__name__)


class GatewayConfig:
    """Gateway configuration loaded from environment variables."""

    def __init__(self) -> None:
        self.shepherd_root = Path(os.environ.get("SHEPHERD_ROOT", "/etc/shepherd"))
        self.host = os.environ.get("SHEPHERD_GATEWAY_HOST", "0.0.0.0")
        self.port = int(os.environ.get("SHEPHERD_GATEWAY_PORT", "8090"))

        # Jenkins
        self.jenkins_url = os.environ.get("SHEPHERD_JENKINS_URL", "http://localhost:8080")
        self.jenkins_user = os.environ.get("SHEPHERD_JENKINS_USER", "admin")
        self.jenkins_token = os.environ.get("SHEPHERD_JENKINS_TOKEN", "admin")
        self.jenkins_timeout = float(os.environ.get("SHEPHERD_JENKINS_TIMEOUT", "30"))

        # Always notified about failed builds, in addition to the project owner
        self.notify_email = os.environ.get("SHEPHERD_NOTIFY_EMAIL", "")

        # Derived paths
        self.projects_dir = self.shepherd_root / "projects"
        self.k8s_dir = self.shepherd_root / "k8s"
        self.host_config_path = self.shepherd_root / "config.json"

        # API key auth
        self.api_key = os.environ.get("SHEPHERD_API_KEY") or self._load_or_create_api_key()

        # CORS origins (comma-separated)
        origins = os.environ.get("SHEPHERD_CORS_ORIGINS", "")
        self.cors_origins: list[str] = [o.strip() for o in origins.split(",") if o.strip()] if origins else ["*"]

    def _load_or_create_api_key(self) -> str:
        """Load API key from <root>/api-key.txt or generate a new one."""
        key_path = self.shepherd_root / "api-key.txt"
        if key_path.exists():
            return key_path.read_text().strip()

        key = secrets.token_urlsafe(32)
        try:
            self.shepherd_root.mkdir(parents=True, exist_ok=True)
            key_path.write_text(key)
        except OSError as exc:
            logger.warning("Could not persist API key to %s: %s", key_path, exc)
        return key


def load_host_config(path: Path) -> HostConfig:
    """Load host limits from ``config.json``, falling back to defaults when absent.

    A present but malformed file raises ValueError.
    """
    if not path.exists():
        logger.info("No host config at %s, using defaults", path)
        return HostConfig()

    try:
        return HostConfig.model_validate(json.loads(path.read_text()))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ValueError(f"Invalid host config {path}: {exc}") from exc


# Singleton
config = GatewayConfig()
