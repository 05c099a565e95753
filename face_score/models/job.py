from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
import uuid

from ..errors import utc_timestamp


class JobState(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass
class ScoringJob:
    """
    One asynchronous unit of work scoring a single image.
    Owned by the JobQueueManager from creation until it reaches a terminal state.
    """
    job_id: str
    image: bytes
    state: JobState = JobState.QUEUED
    session_tag: str | None = None
    created_at: str = ""
    started_at: str | None = None
    finished_at: str | None = None
    result: Optional[Dict[str, Any]] = None   # ScoringResult.to_dict()
    error: Optional[Dict[str, Any]] = None    # format_error_response(...)

    @classmethod
    def create(cls, image: bytes, session_tag: str | None = None) -> "ScoringJob":
        return cls(
            job_id=str(uuid.uuid4()),
            image=image,
            session_tag=session_tag,
            created_at=utc_timestamp(),
        )

    def status_dict(self) -> Dict[str, Any]:
        return {
            "jobId": self.job_id,
            "state": self.state.value,
            "sessionId": self.session_tag,
            "createdAt": self.created_at,
            "startedAt": self.started_at,
            "finishedAt": self.finished_at,
        }
