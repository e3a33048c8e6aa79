"""
TaskManager / TaskExecutor lifecycle tests.

Runs real executors against httpx.MockTransport and a mongomock store.
"""

import asyncio

import httpx
import pytest

from downzer.core.config import ModeConfig
from downzer.core.exceptions import ControlError
from downzer.core.generator import CombinationSpec
from downzer.core.models import Task, TaskStatus
from downzer.core.task_manager import TaskManager
from downzer.db import repository

TEMPLATE = "https://example.com/item/FUZZR"


def slow_handler(delay, seen=None):
    async def handler(request):
        if seen is not None:
            seen.append(str(request.url))
        await asyncio.sleep(delay)
        return httpx.Response(200)

    return handler


def web_config(**kwargs) -> ModeConfig:
    return ModeConfig(mode="webrequest", **kwargs)


def new_manager(make_engine, store, handler) -> TaskManager:
    return TaskManager(store, make_engine(handler, store))


async def wait_idle(manager, timeout=5.0):
    await asyncio.wait_for(manager.wait_idle(), timeout=timeout)


async def wait_for_event(manager, name, task_id, timeout=5.0):
    event = asyncio.Event()

    def on_event(kind, task):
        if kind == name and task.task_id == task_id:
            event.set()

    manager.subscribe(on_event)
    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
    finally:
        manager.unsubscribe(on_event)


class TestCompletion:

    def test_task_runs_to_completion(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0))
            events = []
            manager.subscribe(lambda kind, task: events.append(kind))
            task = manager.submit(TEMPLATE, web_config(max_concurrent=1), CombinationSpec(range=(1, 3)))
            assert task.status == TaskStatus.RUNNING
            await wait_idle(manager)
            return manager.status(task.task_id), events

        task, events = asyncio.run(scenario())
        assert task.status == TaskStatus.COMPLETED
        assert task.total == 3
        assert task.progress == 3
        assert task.result.successful == 3
        assert task.ended_at is not None
        assert events == ["submitted", "started", "finished"]

    def test_invalid_config_fails_without_network(self, make_engine, store):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200)

        async def scenario():
            manager = new_manager(make_engine, store, handler)
            task = manager.submit(TEMPLATE, web_config(max_concurrent=0), CombinationSpec(range=(1, 3)))
            await wait_idle(manager)
            return manager.status(task.task_id)

        task = asyncio.run(scenario())
        assert task.status == TaskStatus.FAILED
        assert "max_concurrent" in task.error_msg
        assert task.progress == 0
        assert calls == []

    def test_unimplemented_mode_fails(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0))
            task = manager.submit("10.0.0.FUZZR", ModeConfig(mode="portscan"), CombinationSpec(range=(1, 2)))
            await wait_idle(manager)
            return manager.status(task.task_id)

        task = asyncio.run(scenario())
        assert task.status == TaskStatus.FAILED
        assert "not yet implemented" in task.error_msg

    def test_unbound_placeholder_fails(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0))
            task = manager.submit("https://x/FUZZW1", web_config(), CombinationSpec(range=(1, 2)))
            await wait_idle(manager)
            return manager.status(task.task_id)

        task = asyncio.run(scenario())
        assert task.status == TaskStatus.FAILED
        assert "FUZZW1" in task.error_msg

    def test_failing_subscriber_does_not_break_task(self, make_engine, store):
        def broken(kind, task):
            raise RuntimeError("subscriber bug")

        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0))
            manager.subscribe(broken)
            task = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 2)))
            await wait_idle(manager)
            return manager.status(task.task_id)

        assert asyncio.run(scenario()).status == TaskStatus.COMPLETED


class TestPauseResume:

    def test_resume_continues_from_offset(self, make_engine, store):
        seen = []

        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.02, seen))
            task = manager.submit(TEMPLATE, web_config(max_concurrent=2), CombinationSpec(range=(1, 60)))
            task_id = task.task_id

            await asyncio.sleep(0.1)
            paused = asyncio.ensure_future(wait_for_event(manager, "paused", task_id))
            await asyncio.sleep(0)
            assert manager.pause([task_id]) == []
            assert manager.status(task_id).status == TaskStatus.PAUSED
            await paused

            at_pause = manager.status(task_id)
            dispatched = len(seen)
            await asyncio.sleep(0.1)
            assert len(seen) == dispatched

            assert manager.resume([task_id]) == []
            await wait_idle(manager)
            return at_pause, dispatched, manager.status(task_id)

        at_pause, dispatched, final = asyncio.run(scenario())

        assert at_pause.status == TaskStatus.PAUSED
        assert 0 < at_pause.progress < 60
        assert at_pause.progress == dispatched
        assert final.status == TaskStatus.COMPLETED
        assert final.progress == 60
        assert final.result.successful == 60
        # No target was sent twice and none was skipped
        assert len(seen) == 60
        assert len(set(seen)) == 60

    def test_illegal_transitions_reported(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.05))
            task = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 5)))
            resume_errors = manager.resume([task.task_id])
            await wait_idle(manager)
            pause_errors = manager.pause([task.task_id])
            return resume_errors, pause_errors

        resume_errors, pause_errors = asyncio.run(scenario())
        assert resume_errors == ["Task 1 is running, cannot move to running"]
        assert pause_errors == ["Task 1 is completed, cannot move to paused"]

    def test_unknown_ids_reported_and_known_applied(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.05))
            task = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 50)))
            errors = manager.pause([task.task_id, 999])
            status = manager.status(task.task_id).status
            await manager.shutdown()
            return errors, status

        errors, status = asyncio.run(scenario())
        assert errors == ["Task 999 not found"]
        assert status == TaskStatus.PAUSED


class TestStop:

    def test_stop_running_task(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(10))
            task = manager.submit(TEMPLATE, web_config(max_concurrent=3), CombinationSpec(range=(1, 10)))
            await asyncio.sleep(0.05)
            errors = await manager.stop([task.task_id])
            stopped = manager.status(task.task_id)
            again = await manager.stop([task.task_id])
            return errors, stopped, again

        errors, stopped, again = asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert errors == []
        assert stopped.status == TaskStatus.STOPPED
        assert stopped.progress == 3
        assert again == ["Task 1 is stopped, cannot move to stopped"]

    def test_stop_paused_task(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.02))
            task = manager.submit(TEMPLATE, web_config(max_concurrent=1), CombinationSpec(range=(1, 100)))
            await asyncio.sleep(0.05)
            manager.pause([task.task_id])
            errors = await manager.stop([task.task_id])
            return errors, manager.status(task.task_id)

        errors, task = asyncio.run(scenario())
        assert errors == []
        assert task.status == TaskStatus.STOPPED
        assert task.ended_at is not None


class TestRunSlot:

    def test_serialized_tasks_queue_and_promote(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.03))
            first = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 2)))
            second = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(3, 4)))
            third = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(5, 6)))
            extra = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(7, 8)), concurrent=True)
            initial = [t.status for t in (first, second, third, extra)]
            await wait_idle(manager)
            return initial, [manager.status(t.task_id) for t in (first, second, third, extra)]

        initial, final = asyncio.run(scenario())
        assert initial == [TaskStatus.RUNNING, TaskStatus.QUEUED, TaskStatus.QUEUED, TaskStatus.RUNNING]
        assert all(t.status == TaskStatus.COMPLETED for t in final)
        first, second, third, _ = final
        assert second.started_at >= first.ended_at
        assert third.started_at >= second.ended_at

    def test_paused_task_keeps_the_slot(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.02))
            first = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 100)))
            await asyncio.sleep(0.05)
            manager.pause([first.task_id])
            second = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 2)))
            await asyncio.sleep(0.1)
            queued = manager.status(second.task_id).status
            await manager.stop([first.task_id])
            await wait_idle(manager)
            return queued, manager.status(second.task_id).status

        queued, final = asyncio.run(scenario())
        assert queued == TaskStatus.QUEUED
        assert final == TaskStatus.COMPLETED

    def test_stop_queued_task_never_runs(self, make_engine, store):
        seen = []

        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0.02, seen))
            first = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 2)))
            second = manager.submit("https://other.example.com/FUZZR", web_config(), CombinationSpec(range=(1, 2)))
            errors = await manager.stop([second.task_id])
            await wait_idle(manager)
            return errors, manager.status(first.task_id), manager.status(second.task_id)

        errors, first, second = asyncio.run(scenario())
        assert errors == []
        assert first.status == TaskStatus.COMPLETED
        assert second.status == TaskStatus.STOPPED
        assert second.started_at is None
        assert not any("other.example.com" in url for url in seen)


class TestShutdown:

    def test_shutdown_interrupts_everything(self, make_engine, store):
        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(10))
            running = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 10)))
            queued = manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 10)))
            await asyncio.sleep(0.05)
            await manager.shutdown()
            await manager.shutdown()
            with pytest.raises(ControlError):
                manager.submit(TEMPLATE, web_config(), CombinationSpec(range=(1, 2)))
            return manager, manager.status(running.task_id), manager.status(queued.task_id)

        manager, running, queued = asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert manager.is_idle
        assert running.status == TaskStatus.STOPPED
        assert queued.status == TaskStatus.STOPPED
        assert queued.error_msg == "Interrupted"

    def test_startup_reconciles_orphans(self, make_engine, store, monkeypatch):
        monkeypatch.setattr(repository.psutil, "pid_exists", lambda pid: False)
        orphan = store.create(Task(template=TEMPLATE, status=TaskStatus.RUNNING, pid=999999))

        async def scenario():
            manager = new_manager(make_engine, store, slow_handler(0))
            return manager.startup()

        assert asyncio.run(scenario()) == 1
        assert store.find_by_id(orphan.task_id).status == TaskStatus.FAILED
