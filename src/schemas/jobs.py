"""
Request/response schemas for the job endpoints.
"""
import uuid
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class JobCreateRequest(BaseModel):
    type: str = Field(..., min_length=1, max_length=200)
    params: Optional[Any] = None
    priority: int = 0
    scheduled_at: Optional[datetime] = None
    user_id: Optional[uuid.UUID] = None


class JobCreateResponse(BaseModel):
    job_id: str
    message: str


class JobStatusResponse(BaseModel):
    id: str
    event_type: str
    job_type: str
    status: str
    progress: int
    result: Optional[Any] = None
    error_message: Optional[str] = None
    retry_count: int
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
