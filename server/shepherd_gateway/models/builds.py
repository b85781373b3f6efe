"""CI build models, as reported by Jenkins."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel


class BuildResult(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNSTABLE = "UNSTABLE"
    BUILDING = "BUILDING"
    NOT_BUILT = "NOT_BUILT"
    ABORTED = "ABORTED"


class BuildRecord(BaseModel):
    number: int
    duration: timedelta
    estimated_duration: timedelta
    started_at: datetime
    result: BuildResult


class LastBuild(BaseModel):
    number: int
    result: BuildResult
    timestamp: datetime


class JobOverview(BaseModel):
    """One entry of the Jenkins jobs overview. ``name`` equals the project ID."""

    name: str
    last_build: LastBuild | None = None
