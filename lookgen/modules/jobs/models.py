"""
Generation Job Models

Tracks remote generation jobs:
- Job record as stored by the remote job service
- Monotonic status lifecycle (queued -> processing -> succeeded|failed)
- Per-session poll state owned by the poller
- Composite handoff between the pre-compositor and the orchestrator
"""

from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator

from lookgen.core.scheduling import CancelToken


class JobType(str, Enum):
    """Remote job types created by the generation core."""
    HEADSHOT_GENERATE = "headshot_generate"
    BODY_COMPOSITE = "body_composite"
    PRODUCT_SHOT = "product_shot"
    OUTFIT_MANNEQUIN = "outfit_mannequin"
    OUTFIT_RENDER = "outfit_render"


class JobStatus(str, Enum):
    """Job status states. Terminal states never change."""
    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    @classmethod
    def can_transition(cls, current: "JobStatus", new: "JobStatus") -> bool:
        """Whether a job may move from current to new."""
        if current == new:
            return True
        if current.is_terminal:
            return False
        return _STATUS_RANK[new] > _STATUS_RANK[current]


_STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.SUCCEEDED: 2,
    JobStatus.FAILED: 2,
}

# Result keys the worker has used for the produced image
RESULT_IMAGE_KEYS = ("image_id", "generated_image_id", "output_image_id")


class Job(BaseModel):
    """
    A tracked unit of remote generation work.

    Created by the orchestrator, mutated only by the remote worker,
    read-only to the poller.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    owner_id: str = Field(validation_alias=AliasChoices("owner_id", "owner_user_id"))
    job_type: JobType
    status: JobStatus = JobStatus.QUEUED
    input: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    feedback_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> Any:
        # The worker reports in-flight jobs as "running"
        if value == "running":
            return JobStatus.PROCESSING
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def result_image_id(self) -> Optional[str]:
        """Resolve the produced image id from the result payload."""
        if not self.result:
            return None
        for key in RESULT_IMAGE_KEYS:
            value = self.result.get(key)
            if isinstance(value, str) and value:
                return value
        return None


class PollState:
    """
    State for one poll session. Owned by JobPoller and
    discarded when polling stops.
    """

    def __init__(
        self,
        job_id: str,
        max_attempts: int,
        interval_ms: int,
        job_type: Optional[str] = None
    ):
        self.job_id = job_id
        self.job_type = job_type
        self.attempts_used = 0
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self.completed = False
        self.token = CancelToken()

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0

    @property
    def exhausted(self) -> bool:
        return self.attempts_used >= self.max_attempts

    @property
    def active(self) -> bool:
        return not self.completed and not self.token.cancelled

    def __repr__(self) -> str:
        return (
            f"PollState(job_id={self.job_id!r}, attempts_used={self.attempts_used}, "
            f"max_attempts={self.max_attempts}, completed={self.completed})"
        )


class CompositeResult(BaseModel):
    """An uploaded grid composite, valid only for the selection that produced it."""
    selection_signature: str
    storage_key: str
    public_url: Optional[str] = None

    def matches(self, selection_signature: str) -> bool:
        return self.selection_signature == selection_signature
