"""Work queue engine — rate-limited, retrying, persistent task queue."""

from commitcaster.engines.work_queue.backoff import compute_retry_delay, is_rate_limit_error
from commitcaster.engines.work_queue.queue import Priority, QueueConfig, WorkQueue

__all__ = [
    "Priority",
    "QueueConfig",
    "WorkQueue",
    "compute_retry_delay",
    "is_rate_limit_error",
]
