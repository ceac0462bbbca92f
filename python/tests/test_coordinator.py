"""Tests for the department coordinator (workforce/coordinator.py)."""

import asyncio
import logging

import pytest

from workforce.config import TaskRoutingConfig
from workforce.coordinator import DepartmentCoordinator, TaskResult
from workforce.exceptions import TaskFailedError, WorkforceTimeoutError
from workforce.models import MemberRole, MemberStatus, Priority, Task, TaskStatus


@pytest.fixture
def coordinator(manager):
    return DepartmentCoordinator(manager)


async def echo_executor(task, member):
    return {"response": f"{member.id} did {task.title}", "tool_calls": [{"name": "shell"}]}


async def failing_executor(task, member):
    raise RuntimeError("agent crashed")


def test_submit_request_builds_and_routes(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = coordinator.submit_request("Fix the python crash\nstack trace attached", requested_by="alice")

    assert task.type == "bug_fix"
    assert task.department_id == "dept-dev"
    assert task.assigned_member == "dev-1"
    assert task.required_skills == ["python"]
    assert task.requested_by == "alice"


def test_customer_request(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = coordinator.create_customer_request(
        "Export report", "Need CSV export", requested_by="acme", priority=Priority.HIGH,
    )
    assert task.type == "customer_request"
    assert task.priority == Priority.HIGH
    assert task.metadata == {"source": "customer"}
    # customer requests need a keyword rule or default department to route
    assert task.status == TaskStatus.QUEUED
    assert task.department_id == ""


def test_customer_request_uses_default_department(make_manager, make_config, make_member):
    manager = make_manager(make_config(task_routing=TaskRoutingConfig(default_department="dept-dev")))
    manager.register_member(make_member("dev-1"))
    task = DepartmentCoordinator(manager).create_customer_request("Export report", "CSV", requested_by="acme")
    assert task.assigned_member == "dev-1"


async def test_execute_task_success(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Write docs", department_id="dept-dev"))

    result = await coordinator.execute_task(task.id, echo_executor)

    assert isinstance(result, TaskResult)
    assert result.content == "dev-1 did Write docs"
    assert result.tool_calls == [{"name": "shell"}]
    assert result.member_id == "dev-1"
    assert result.execution_time >= 0

    stored = manager.get_task(task.id)
    assert stored.status == TaskStatus.COMPLETED
    assert stored.results["member_role"] == "developer"
    assert stored.started_at is not None
    assert manager.get_member("dev-1").current_tasks == []
    assert manager.get_member_stats("dev-1").completed_tasks == 1


async def test_execute_task_failure(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Write docs", department_id="dept-dev"))

    with pytest.raises(RuntimeError, match="agent crashed"):
        await coordinator.execute_task(task.id, failing_executor)

    stored = manager.get_task(task.id)
    assert stored.status == TaskStatus.FAILED
    assert stored.results == {"error": "agent crashed"}
    assert manager.get_member_stats("dev-1").failed_tasks == 1


async def test_execute_unassigned_task(coordinator, manager):
    task = manager.create_task(Task(title="Write docs", department_id="dept-dev"))
    with pytest.raises(TaskFailedError):
        await coordinator.execute_task(task.id, echo_executor)


async def test_wait_for_completion_sees_later_transition(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Write docs", department_id="dept-dev"))

    waiter = asyncio.create_task(coordinator.wait_for_completion(task.id, timeout=1))
    await asyncio.sleep(0)
    await coordinator.execute_task(task.id, echo_executor)

    result = await waiter
    assert result.content == "dev-1 did Write docs"


async def test_wait_for_completion_raises_on_failure(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Write docs", department_id="dept-dev"))
    manager.update_task_status(task.id, TaskStatus.FAILED, {"error": "boom"})

    with pytest.raises(TaskFailedError, match="boom"):
        await coordinator.wait_for_completion(task.id, timeout=1)


async def test_wait_for_completion_times_out(coordinator, manager):
    task = manager.create_task(Task(title="Write docs", department_id="dept-dev"))
    with pytest.raises(WorkforceTimeoutError):
        await coordinator.wait_for_completion(task.id, timeout=0.05)
    assert manager.task_events.subscriber_count == 0


async def test_run_waits_for_a_member(coordinator, manager, make_member):
    runner = asyncio.create_task(coordinator.run("Implement search", echo_executor, timeout=1))
    await asyncio.sleep(0.01)
    assert not runner.done()

    manager.register_member(make_member("dev-1"))
    manager.dispatch_queued_tasks()

    result = await runner
    assert result.member_id == "dev-1"
    assert result.content == "dev-1 did Implement search"


def test_department_status(coordinator, manager, make_member):
    manager.register_member(make_member("dev-1", max_concurrent=1))
    manager.register_member(make_member("dev-2", max_concurrent=1))
    manager.register_member(make_member("qa-1", "dept-qa", MemberRole.QA))
    manager.update_member_status("qa-1", MemberStatus.OFFLINE)

    first = manager.create_task(Task(title="a", department_id="dept-dev"))
    manager.create_task(Task(title="b", department_id="dept-dev"))
    manager.update_task_status(first.id, TaskStatus.COMPLETED)

    status = coordinator.get_department_status()

    dev = status["dept-dev"]
    assert dev["department"]["id"] == "dept-dev"
    assert dev["members"] == {"total": 2, "online": 1, "busy": 1, "offline": 0}
    assert dev["tasks"] == {"total": 2, "queued": 0, "active": 1, "completed": 1, "failed": 0}
    assert status["dept-qa"]["members"]["offline"] == 1
    assert set(status) == {"dept-dev", "dept-devops", "dept-security", "dept-qa"}


async def test_start_logs_events_until_stopped(coordinator, manager, make_member, caplog):
    caplog.set_level(logging.INFO, logger="workforce.coordinator")
    await coordinator.start()
    assert manager.member_events.subscriber_count == 1

    manager.register_member(make_member("dev-1"))
    await asyncio.sleep(0.01)
    await coordinator.stop()

    assert any("Member event: type=created member=dev-1" in r.getMessage() for r in caplog.records)
    assert manager.member_events.subscriber_count == 0
