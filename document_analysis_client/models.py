import os
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BASE_URL = "http://localhost:3001/api"


def default_base_url() -> str:
    return os.environ.get("DOCUMENT_ANALYSIS_API_URL", DEFAULT_BASE_URL)


class JobStatus(str, Enum):
    processing = "processing"
    completed = "completed"
    failed = "failed"


class StatusResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus
    raw_response: dict
    elapsed_time: float


class UploadResponse(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: str = Field(alias="jobId", min_length=1)


class JobResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    job_id: str = Field(alias="jobId")
    summary: str
    topics: List[str]
    sentiment: str


class PollerState(BaseModel):
    """Snapshot of what the poller currently knows about the watched job"""

    model_config = ConfigDict(frozen=True)

    job_id: Optional[str] = None
    status: Optional[JobStatus] = None
    polling: bool = False
    result: Optional[JobResult] = None
    result_unavailable: bool = False
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        if self.error is not None:
            return True
        return self.status in (JobStatus.completed, JobStatus.failed)


class ClientConfig(BaseModel):
    request_timeout: float = 30.0
    max_upload_bytes: int = 1024 * 1024  # 1MB
    allowed_extensions: Tuple[str, ...] = (".txt",)
