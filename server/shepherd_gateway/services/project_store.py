"""Project descriptor store: one JSON file per project under ``<root>/projects``."""

from __future__ import annotations

import fcntl
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pydantic import ValidationError

from ..errors import CorruptedProjectError, ProjectAlreadyExistsError, ProjectNotFoundError
from ..models.project import Project

logger = logging.getLogger(__name__)


class ProjectStore:
    """Reads and writes ``<id>.json`` descriptor files.

    Nothing is cached: every call goes to disk.
    """

    def __init__(self, projects_dir: Path) -> None:
        self.projects_dir = projects_dir
        self._lock_path = projects_dir / ".lock"
        self._thread_lock = threading.Lock()

    def _project_path(self, project_id: str) -> Path:
        return self.projects_dir / f"{project_id}.json"

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Exclusive section over the whole store, across threads and processes."""
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        with self._thread_lock:
            with open(self._lock_path, "w") as lock_file:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
                try:
                    yield
                finally:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    # ── Queries ──────────────────────────────────────────────────────────

    def list_ids(self) -> list[str]:
        """Sorted IDs of all stored projects."""
        if not self.projects_dir.exists():
            return []
        return sorted(f.stem for f in self.projects_dir.glob("*.json"))

    def exists(self, project_id: str) -> bool:
        return self._project_path(project_id).exists()

    def get(self, project_id: str) -> Project:
        """Raises ProjectNotFoundError, or CorruptedProjectError if the file does not parse."""
        path = self._project_path(project_id)
        try:
            raw = path.read_text()
        except FileNotFoundError:
            raise ProjectNotFoundError(project_id) from None
        try:
            return Project.from_json(raw)
        except ValidationError as exc:
            raise CorruptedProjectError(project_id, path, exc) from exc

    def get_all(self) -> list[Project]:
        projects = []
        for project_id in self.list_ids():
            try:
                projects.append(self.get(project_id))
            except ProjectNotFoundError:
                # deleted between listing and reading
                continue
        return projects

    def require_not_exists(self, project_id: str) -> None:
        if self.exists(project_id):
            raise ProjectAlreadyExistsError(project_id)

    # ── Mutations ────────────────────────────────────────────────────────

    def put(self, project: Project) -> None:
        """Write the descriptor with an atomic rename; readers never see a partial file."""
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        path = self._project_path(project.id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(project.to_json())
        tmp_path.rename(path)
        logger.debug("Wrote %s", path)

    def delete_if_exists(self, project_id: str) -> bool:
        self.clear_pending(project_id)
        path = self._project_path(project_id)
        if not path.exists():
            return False
        path.unlink(missing_ok=True)
        logger.info("Deleted project descriptor %s", path)
        return True

    # ── Pending redeploy marker ──────────────────────────────────────────
    #
    # ``<id>.pending`` holds the redeploy an update still owes the project.
    # It is written before the descriptor is overwritten and removed only once
    # the build or apply has been issued.

    def _pending_path(self, project_id: str) -> Path:
        return self.projects_dir / f"{project_id}.pending"

    def get_pending(self, project_id: str) -> str | None:
        try:
            return self._pending_path(project_id).read_text().strip() or None
        except FileNotFoundError:
            return None

    def set_pending(self, project_id: str, kind: str) -> None:
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        path = self._pending_path(project_id)
        tmp_path = path.with_suffix(".pending.tmp")
        tmp_path.write_text(kind)
        tmp_path.rename(path)
        logger.debug("%s: pending %s", project_id, kind)

    def clear_pending(self, project_id: str) -> None:
        self._pending_path(project_id).unlink(missing_ok=True)
