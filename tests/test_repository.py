"""
Task repository tests (mongomock).

Covers id allocation, conditional transitions, monotonic progress and
reconciliation of tasks orphaned by a dead daemon.
"""

import pytest

from downzer.core.models import ModeResult, Task, TaskStatus
from downzer.db import repository as repository_module


def make_task(status=TaskStatus.RUNNING, **kwargs) -> Task:
    return Task(template="https://example.com/FUZZR", mode="download", status=status, **kwargs)


class TestIds:

    def test_ids_increase_from_one(self, store):
        first = store.create(make_task())
        second = store.create(make_task())
        assert first.task_id == 1
        assert second.task_id == 2

    def test_ids_are_not_reused_after_delete(self, store):
        task = store.create(make_task())
        assert store.delete(task.task_id)
        assert not store.exists(task.task_id)
        assert store.create(make_task()).task_id == task.task_id + 1

    def test_running_task_gets_started_at(self, store):
        assert store.create(make_task()).started_at is not None
        assert store.create(make_task(TaskStatus.QUEUED)).started_at is None


class TestQueries:

    def test_find_by_id(self, store):
        task = store.create(make_task(total=12))
        found = store.find_by_id(task.task_id)
        assert found.total == 12
        assert store.find_by_id(999) is None

    def test_list_excludes_finished_when_asked(self, store):
        done = store.create(make_task())
        store.transition(done.task_id, TaskStatus.COMPLETED)
        live = store.create(make_task())

        assert [t.task_id for t in store.list_tasks()] == [done.task_id, live.task_id]
        assert [t.task_id for t in store.list_tasks(include_finished=False)] == [live.task_id]

    def test_queued_in_submission_order(self, store):
        ids = [store.create(make_task(TaskStatus.QUEUED)).task_id for _ in range(3)]
        assert [t.task_id for t in store.find_queued()] == ids


class TestTransitions:

    def test_allowed_transition_applies(self, store):
        task = store.create(make_task())
        paused = store.transition(task.task_id, TaskStatus.PAUSED)
        assert paused.status == TaskStatus.PAUSED
        assert paused.ended_at is None

    def test_disallowed_transition_returns_none(self, store):
        task = store.create(make_task(TaskStatus.QUEUED))
        assert store.transition(task.task_id, TaskStatus.PAUSED) is None
        assert store.find_by_id(task.task_id).status == TaskStatus.QUEUED

    def test_terminal_task_is_immutable(self, store):
        task = store.create(make_task())
        store.transition(task.task_id, TaskStatus.STOPPED)

        for target in (TaskStatus.RUNNING, TaskStatus.PAUSED, TaskStatus.COMPLETED, TaskStatus.FAILED):
            assert store.transition(task.task_id, target) is None
        assert not store.update_progress(task.task_id, 5)
        assert not store.set_total(task.task_id, 100)
        assert store.find_by_id(task.task_id).status == TaskStatus.STOPPED

    def test_terminal_sets_ended_at_and_result(self, store):
        task = store.create(make_task())
        result = ModeResult(mode="download", successful=3, elapsed=1.0)
        finished = store.transition(task.task_id, TaskStatus.COMPLETED, result=result, progress=3)
        assert finished.ended_at is not None
        assert finished.progress == 3
        assert finished.result.successful == 3

    def test_queued_to_running_sets_started_at(self, store):
        task = store.create(make_task(TaskStatus.QUEUED))
        running = store.transition(task.task_id, TaskStatus.RUNNING)
        assert running.started_at is not None

    def test_unknown_task(self, store):
        assert store.transition(404, TaskStatus.STOPPED) is None


class TestProgress:

    def test_progress_never_decreases(self, store):
        task = store.create(make_task(total=10))
        assert store.update_progress(task.task_id, 6)
        assert store.update_progress(task.task_id, 4)
        assert store.find_by_id(task.task_id).progress == 6

    def test_progress_accepted_while_paused(self, store):
        task = store.create(make_task(total=10))
        store.transition(task.task_id, TaskStatus.PAUSED)
        assert store.update_progress(task.task_id, 2, ModeResult(successful=2))
        stored = store.find_by_id(task.task_id)
        assert stored.progress == 2
        assert stored.result.successful == 2

    def test_progress_rejected_while_queued(self, store):
        task = store.create(make_task(TaskStatus.QUEUED))
        assert not store.update_progress(task.task_id, 1)


class TestReconcile:

    def test_dead_owner_marks_failed(self, store, monkeypatch):
        monkeypatch.setattr(repository_module.psutil, "pid_exists", lambda pid: pid != 4242)

        orphan = store.create(make_task(pid=4242))
        queued_orphan = store.create(make_task(TaskStatus.QUEUED, pid=4242))
        alive = store.create(make_task(pid=77))
        mine = store.create(make_task(pid=1))
        done = store.create(make_task(pid=4242))
        store.transition(done.task_id, TaskStatus.COMPLETED)

        assert store.reconcile_dead_daemons(current_pid=1) == 2

        failed = store.find_by_id(orphan.task_id)
        assert failed.status == TaskStatus.FAILED
        assert "4242" in failed.error_msg
        assert store.find_by_id(queued_orphan.task_id).status == TaskStatus.FAILED
        assert store.find_by_id(alive.task_id).status == TaskStatus.RUNNING
        assert store.find_by_id(mine.task_id).status == TaskStatus.RUNNING
        assert store.find_by_id(done.task_id).status == TaskStatus.COMPLETED

    @pytest.mark.parametrize("status", [TaskStatus.PAUSED])
    def test_paused_orphan_is_failed(self, store, monkeypatch, status):
        monkeypatch.setattr(repository_module.psutil, "pid_exists", lambda pid: False)
        task = store.create(make_task(pid=9999))
        store.transition(task.task_id, status)
        assert store.reconcile_dead_daemons(current_pid=1) == 1
