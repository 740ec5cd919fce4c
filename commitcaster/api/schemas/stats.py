"""Stats response schema."""

from __future__ import annotations

from pydantic import BaseModel

from commitcaster.api.schemas.queue import QueueStats


class StatsResponse(BaseModel):
    queue: QueueStats
    stored_queue_items: dict[str, int]
    posts_total: int
    posts_last_24h: int
    posts_by_repo: dict[str, int]
    tenants: int
