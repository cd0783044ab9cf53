"""
Unit tests for crate_docs/ops/tasks.py

Tests the task state machine, cancellation and listing.
"""
from datetime import timedelta

import pytest

from crate_docs.errors import TaskCancelledError
from crate_docs.ops import CachingStage, CancellationToken, TaskManager, TaskStatus
from crate_docs.persist import CrateIdentifier
from crate_docs.service import CrateDocsService


@pytest.fixture
def manager():
    return TaskManager()


def _create(manager, name="serde", version="1.0.0", **kwargs):
    return manager.create_task(name, version, "registry", **kwargs)


def test_create_task(manager):
    task = _create(manager, members=["crates/a"], update=True)

    assert task.status == TaskStatus.PENDING
    assert task.stage is None
    assert task.members == ["crates/a"]
    assert task.update
    assert manager.get_task(task.task_id).crate_name == "serde"
    assert manager.get_task("missing") is None


def test_snapshots_are_copies(manager):
    task = _create(manager, members=["a"])
    task.status = TaskStatus.FAILED
    task.members.append("b")

    stored = manager.get_task(task.task_id)
    assert stored.status == TaskStatus.PENDING
    assert stored.members == ["a"]


def test_stage_progression(manager):
    task = _create(manager)

    assert manager.update_stage(task.task_id, CachingStage.DOWNLOADING)
    current = manager.get_task(task.task_id)
    assert current.status == TaskStatus.IN_PROGRESS
    assert current.stage == CachingStage.DOWNLOADING
    assert current.step_description == "Downloading crate source"

    manager.update_stage(task.task_id, CachingStage.GENERATING_DOCS, total_steps=3)
    manager.update_step(task.task_id, 2, "Generating docs for member b")
    current = manager.get_task(task.task_id)
    assert (current.current_step, current.total_steps) == (2, 3)
    assert current.step_description == "Generating docs for member b"

    assert manager.update_status(task.task_id, TaskStatus.COMPLETED)
    current = manager.get_task(task.task_id)
    assert current.stage == CachingStage.COMPLETED
    assert current.completed_at is not None


def test_terminal_tasks_never_change(manager):
    task = _create(manager)
    manager.update_status(task.task_id, TaskStatus.COMPLETED)

    assert not manager.update_status(task.task_id, TaskStatus.FAILED)
    assert not manager.update_stage(task.task_id, CachingStage.INDEXING)
    assert not manager.update_step(task.task_id, 5)
    assert not manager.set_error(task.task_id, "late error")
    assert manager.get_task(task.task_id).status == TaskStatus.COMPLETED


def test_status_cannot_regress_to_pending(manager):
    task = _create(manager)
    manager.update_status(task.task_id, TaskStatus.IN_PROGRESS)
    assert not manager.update_status(task.task_id, TaskStatus.PENDING)


def test_set_error(manager):
    task = _create(manager)
    assert manager.set_error(task.task_id, "boom")
    failed = manager.get_task(task.task_id)
    assert failed.status == TaskStatus.FAILED
    assert failed.error == "boom"


def test_cancel_is_idempotent(manager):
    task = _create(manager)

    cancelled = manager.cancel_task(task.task_id)
    assert cancelled.status == TaskStatus.CANCELLED
    assert task.cancellation.is_cancelled
    assert manager.is_cancelled(task.task_id)

    first_completed = cancelled.completed_at
    again = manager.cancel_task(task.task_id)
    assert again.status == TaskStatus.CANCELLED
    assert again.completed_at == first_completed
    assert manager.cancel_task("unknown") is None


def test_cancel_terminal_task_is_noop(manager):
    task = _create(manager)
    manager.update_status(task.task_id, TaskStatus.COMPLETED)

    snapshot = manager.cancel_task(task.task_id)
    assert snapshot.status == TaskStatus.COMPLETED
    assert not manager.is_cancelled(task.task_id)


def test_cancellation_token():
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel()
    with pytest.raises(TaskCancelledError):
        token.raise_if_cancelled()


def test_list_tasks_newest_first(manager):
    first = _create(manager, name="a")
    second = _create(manager, name="b")
    third = _create(manager, name="c")

    assert [t.task_id for t in manager.list_tasks()] == [third.task_id, second.task_id, first.task_id]

    manager.update_status(second.task_id, TaskStatus.COMPLETED)
    assert [t.task_id for t in manager.list_tasks(TaskStatus.COMPLETED)] == [second.task_id]
    assert len(manager.list_tasks(TaskStatus.PENDING)) == 2


def test_clear_terminal_tasks(manager):
    done = _create(manager)
    failed = _create(manager)
    running = _create(manager)
    manager.update_status(done.task_id, TaskStatus.COMPLETED)
    manager.set_error(failed.task_id, "x")
    manager.update_stage(running.task_id, CachingStage.DOWNLOADING)

    removed = manager.clear_terminal_tasks()

    assert {t.task_id for t in removed} == {done.task_id, failed.task_id}
    assert [t.task_id for t in manager.list_tasks()] == [running.task_id]
    assert manager.count_by_status()[TaskStatus.IN_PROGRESS] == 1


def test_remove_task(manager):
    task = _create(manager)
    assert manager.remove_task(task.task_id).task_id == task.task_id
    assert manager.remove_task(task.task_id) is None


def test_to_dict_and_elapsed(manager):
    task = _create(manager)
    manager.update_stage(task.task_id, CachingStage.INDEXING)
    manager.update_status(task.task_id, TaskStatus.COMPLETED)
    current = manager.get_task(task.task_id)

    data = current.to_dict()
    assert data["status"] == "completed"
    assert data["stage"] == "completed"
    assert data["completed_at"] is not None
    assert current.elapsed_seconds() >= 0
    current.completed_at = current.started_at + timedelta(seconds=65)
    assert current.elapsed_seconds() == 65


def test_stage_numbers_and_display():
    assert CachingStage.DOWNLOADING.number == 1
    assert CachingStage.INDEXING.number == 3
    assert TaskStatus.COMPLETED.display == "COMPLETED ✓"
    assert TaskStatus.CANCELLED.is_terminal
    assert not TaskStatus.IN_PROGRESS.is_terminal


@pytest.mark.asyncio
async def test_submit_and_wait(manager):
    task = _create(manager)

    async def worker(t):
        manager.update_stage(t.task_id, CachingStage.DOWNLOADING)
        manager.update_status(t.task_id, TaskStatus.COMPLETED)

    manager.submit(task, worker)
    final = await manager.wait(task.task_id)
    assert final.status == TaskStatus.COMPLETED


def test_submit_requires_running_loop(manager):
    task = _create(manager)
    started = []

    with pytest.raises(RuntimeError):
        manager.submit(task, started.append)

    assert started == []


def test_start_caching_task_outside_event_loop(settings, fake_runner, demo_crate):
    service = CrateDocsService(settings, runner=fake_runner)
    try:
        with pytest.raises(RuntimeError):
            service.start_caching_task(CrateIdentifier("demo-crate", "1.0.0"), source=str(demo_crate))
        assert service.list_tasks() == []
    finally:
        service.close()
