"""
Task management for background caching.

Tracks each caching job's status and stage in an in-process table. Callers
always receive copies; only the TaskManager mutates the table, under a lock.
Status only moves forward (pending -> in_progress -> terminal) and terminal
tasks never change again except by removal.
"""

import asyncio
import itertools
import logging
import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from crate_docs.errors import TaskCancelledError

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

    @property
    def display(self) -> str:
        return {
            TaskStatus.PENDING: "PENDING",
            TaskStatus.IN_PROGRESS: "IN PROGRESS",
            TaskStatus.COMPLETED: "COMPLETED ✓",
            TaskStatus.FAILED: "FAILED ✗",
            TaskStatus.CANCELLED: "CANCELLED",
        }[self]


class CachingStage(str, Enum):
    DOWNLOADING = "downloading"
    GENERATING_DOCS = "generating_docs"
    INDEXING = "indexing"
    COMPLETED = "completed"

    @property
    def description(self) -> str:
        return {
            CachingStage.DOWNLOADING: "Downloading crate source",
            CachingStage.GENERATING_DOCS: "Generating documentation",
            CachingStage.INDEXING: "Building search index",
            CachingStage.COMPLETED: "Caching complete",
        }[self]

    @property
    def number(self) -> int:
        """Position of the stage in the pipeline (1-based)."""
        return list(CachingStage).index(self) + 1


class CancellationToken:
    """Shared, thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, message: str = "Task was cancelled") -> None:
        if self._event.is_set():
            raise TaskCancelledError(message)


@dataclass
class CachingTask:
    """State of one background caching job."""

    task_id: str
    crate_name: str
    version: str
    source_type: str
    source_details: Optional[str] = None
    members: Optional[list[str]] = None
    update: bool = False
    status: TaskStatus = TaskStatus.PENDING
    stage: Optional[CachingStage] = None
    current_step: int = 0
    total_steps: int = 0
    step_description: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    cancellation: CancellationToken = field(default_factory=CancellationToken, repr=False, compare=False)
    sequence: int = field(default=0, repr=False, compare=False)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def elapsed_seconds(self) -> float:
        end = self.completed_at or datetime.now(timezone.utc)
        return max(0.0, (end - self.started_at).total_seconds())

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "task_id": self.task_id,
            "crate_name": self.crate_name,
            "version": self.version,
            "source_type": self.source_type,
            "source_details": self.source_details,
            "members": self.members,
            "update": self.update,
            "status": self.status.value,
            "stage": self.stage.value if self.stage else None,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "step_description": self.step_description,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


def _snapshot(task: CachingTask) -> CachingTask:
    # Shallow copy sharing the cancellation token
    return replace(task, members=list(task.members) if task.members is not None else None)


class TaskManager:
    """
    In-process registry of caching tasks.

    All methods are synchronous and lock-protected, so they can be called
    from the event loop or from worker threads.
    """

    def __init__(self):
        self._tasks: dict[str, CachingTask] = {}
        self._handles: dict[str, asyncio.Task] = {}
        self._lock = threading.RLock()
        self._sequence = itertools.count(1)

    def create_task(
        self,
        crate_name: str,
        version: str,
        source_type: str,
        source_details: Optional[str] = None,
        members: Optional[list[str]] = None,
        update: bool = False,
    ) -> CachingTask:
        """
        Register a new pending task.

        Returns:
            Snapshot of the created task
        """
        task = CachingTask(
            task_id=str(uuid.uuid4()),
            crate_name=crate_name,
            version=version,
            source_type=source_type,
            source_details=source_details,
            members=list(members) if members else None,
            update=update,
        )
        with self._lock:
            task.sequence = next(self._sequence)
            self._tasks[task.task_id] = task
        logger.info(f"Created caching task {task.task_id} for {crate_name}-{version}")
        return _snapshot(task)

    def submit(
        self,
        task: CachingTask,
        worker_fn: Callable[[CachingTask], Awaitable[None]],
    ) -> asyncio.Task:
        """
        Schedule a worker coroutine for a task on the running loop.

        Args:
            task: Task snapshot handed to the worker
            worker_fn: Async function driving the task

        Returns:
            The asyncio.Task running the worker

        Raises:
            RuntimeError: If no event loop is running
        """
        loop = asyncio.get_running_loop()
        handle = loop.create_task(worker_fn(task))
        with self._lock:
            self._handles[task.task_id] = handle
        handle.add_done_callback(lambda _: self._forget_handle(task.task_id))
        return handle

    def _forget_handle(self, task_id: str) -> None:
        with self._lock:
            self._handles.pop(task_id, None)

    async def wait(self, task_id: str) -> Optional[CachingTask]:
        """Wait for a task's worker to finish and return the final snapshot."""
        with self._lock:
            handle = self._handles.get(task_id)
        if handle is not None:
            await asyncio.gather(handle, return_exceptions=True)
        return self.get_task(task_id)

    def get_task(self, task_id: str) -> Optional[CachingTask]:
        """
        Get a task snapshot by ID.

        Returns:
            CachingTask copy if found, None otherwise
        """
        with self._lock:
            task = self._tasks.get(task_id)
            return _snapshot(task) if task else None

    def list_tasks(self, status: Optional[TaskStatus] = None) -> list[CachingTask]:
        """
        List tasks, optionally filtered by status.

        Returns:
            Task snapshots, most recent first
        """
        with self._lock:
            tasks = [_snapshot(t) for t in self._tasks.values()]

        if status is not None:
            tasks = [t for t in tasks if t.status == status]

        tasks.sort(key=lambda t: (t.started_at, t.sequence), reverse=True)
        return tasks

    def update_stage(
        self,
        task_id: str,
        stage: CachingStage,
        total_steps: int = 1,
        step_description: Optional[str] = None,
    ) -> bool:
        """
        Move a task to a new stage (claiming it if still pending).

        Returns:
            False if the task is unknown or already terminal
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return False
            if task.status == TaskStatus.PENDING:
                task.status = TaskStatus.IN_PROGRESS
            task.stage = stage
            task.current_step = 1
            task.total_steps = total_steps
            task.step_description = step_description or stage.description
        logger.info(f"Task {task_id}: {stage.description}")
        return True

    def update_step(self, task_id: str, step: int, description: Optional[str] = None) -> bool:
        """Record progress within the current stage."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return False
            task.current_step = step
            if description:
                task.step_description = description
        return True

    def update_status(self, task_id: str, status: TaskStatus) -> bool:
        """
        Set a task's status, refusing regressions.

        Returns:
            False if the task is unknown, terminal, or the move goes backwards
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return False
            if status == TaskStatus.PENDING and task.status != TaskStatus.PENDING:
                return False
            task.status = status
            if status.is_terminal:
                task.completed_at = datetime.now(timezone.utc)
                if status == TaskStatus.COMPLETED:
                    task.stage = CachingStage.COMPLETED
        return True

    def set_error(self, task_id: str, error: str) -> bool:
        """Record an error and mark the task failed."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_terminal:
                return False
            task.error = error
            task.status = TaskStatus.FAILED
            task.completed_at = datetime.now(timezone.utc)
        logger.error(f"Task {task_id} failed: {error}")
        return True

    def cancel_task(self, task_id: str) -> Optional[CachingTask]:
        """
        Signal cancellation and mark the task cancelled.

        Cancelling a terminal task changes nothing and returns it as is.

        Returns:
            Task snapshot, or None if the ID is unknown
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            if not task.is_terminal:
                task.cancellation.cancel()
                task.status = TaskStatus.CANCELLED
                task.completed_at = datetime.now(timezone.utc)
                logger.info(f"Cancelled task {task_id}")
            return _snapshot(task)

    def is_cancelled(self, task_id: str) -> bool:
        with self._lock:
            task = self._tasks.get(task_id)
            return bool(task and task.cancellation.is_cancelled)

    def remove_task(self, task_id: str) -> Optional[CachingTask]:
        """Remove a task regardless of status."""
        with self._lock:
            return self._tasks.pop(task_id, None)

    def clear_terminal_tasks(self) -> list[CachingTask]:
        """
        Remove every completed, failed or cancelled task.

        Returns:
            The removed tasks
        """
        with self._lock:
            removed = [t for t in self._tasks.values() if t.is_terminal]
            for task in removed:
                del self._tasks[task.task_id]
        if removed:
            logger.info(f"Cleared {len(removed)} finished tasks")
        return removed

    def count_by_status(self) -> dict[TaskStatus, int]:
        with self._lock:
            counts = {status: 0 for status in TaskStatus}
            for task in self._tasks.values():
                counts[task.status] += 1
        return counts
