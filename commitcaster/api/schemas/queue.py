"""Work-queue schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class QueueStats(BaseModel):
    pending: int
    processing: int
    retrying: int
    failed: int
    rpm_remaining: int
    avg_processing_ms: float
    total_processed: int = 0
    total_failed: int = 0
    total_retries: int = 0
    restored_from_db: int = 0
    current_queue_length: int = 0
    max_requests_per_minute: int = 0


class QueueItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    queue_id: str
    task_type: str
    user_id: str
    priority: int
    status: str
    retry_count: int
    error_message: str | None
    position: int = -1
    created_at: datetime
    updated_at: datetime


class CancelResponse(BaseModel):
    queue_id: str
    cancelled: bool
