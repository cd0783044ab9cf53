"""
Background caching operations.

Provides:
- Task management with status/stage tracking and cancellation
- Async caching worker
- Markdown task formatting
"""

from .cache_worker import run_cache_task
from .formatter import format_duration, format_task, format_task_list, format_task_started
from .tasks import (
    CachingStage,
    CachingTask,
    CancellationToken,
    TaskManager,
    TaskStatus,
)

__all__ = [
    "run_cache_task",
    "format_duration",
    "format_task",
    "format_task_list",
    "format_task_started",
    "CachingStage",
    "CachingTask",
    "CancellationToken",
    "TaskManager",
    "TaskStatus",
]
