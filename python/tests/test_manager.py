"""Tests for the registry core (workforce/manager.py)."""

import asyncio

import pytest

from workforce.config import DepartmentDefinition
from workforce.events import EventType
from workforce.exceptions import (
    AlreadyExistsError,
    CapacityExceededError,
    HasActiveWorkError,
    InvalidTransitionError,
    ManagerStateError,
    NotFoundError,
    ValidationError,
)
from workforce.models import (
    DepartmentType,
    MemberRole,
    MemberStatus,
    Priority,
    Task,
    TaskStatus,
    Team,
    Workflow,
)


# --- Departments ---


def test_default_departments_installed(manager):
    departments = {d.id: d for d in manager.list_departments()}
    assert set(departments) == {"dept-dev", "dept-devops", "dept-security", "dept-qa"}
    dev = departments["dept-dev"]
    assert dev.name == "Development Services"
    assert (dev.min_members, dev.max_members, dev.auto_scale) == (2, 10, True)
    assert departments["dept-security"].max_members == 4


def test_configured_departments_replace_defaults(make_manager, make_config):
    config = make_config(departments=[
        DepartmentDefinition(id="dept-a", name="A", type=DepartmentType.DEVELOPMENT, max_members=2),
    ])
    manager = make_manager(config)
    assert [d.id for d in manager.list_departments()] == ["dept-a"]


def test_add_and_remove_department(manager, make_member):
    manager.add_department(DepartmentDefinition(id="dept-pm", name="PM", type=DepartmentType.PRODUCT_MANAGER))
    with pytest.raises(AlreadyExistsError):
        manager.add_department(DepartmentDefinition(id="dept-pm", name="PM", type=DepartmentType.PRODUCT_MANAGER))

    manager.register_member(make_member("pm-1", "dept-pm", MemberRole.PM))
    with pytest.raises(HasActiveWorkError):
        manager.remove_department("dept-pm")

    manager.unregister_member("pm-1")
    manager.remove_department("dept-pm")
    with pytest.raises(NotFoundError):
        manager.get_department("dept-pm")


def test_update_department_validates_bounds(manager):
    updated = manager.update_department("dept-qa", max_members=3, auto_scale=False)
    assert updated.max_members == 3
    assert updated.auto_scale is False
    with pytest.raises(ValidationError):
        manager.update_department("dept-qa", min_members=5)


# --- Members ---


def test_register_member_sets_defaults(manager, make_member):
    member = make_member("lead-1", role=MemberRole.LEAD_DEV, status=MemberStatus.OFFLINE)
    registered = manager.register_member(member)

    assert registered.status == MemberStatus.ONLINE
    assert registered.is_lead is True
    assert registered.department_type == DepartmentType.DEVELOPMENT
    assert registered.current_tasks == []
    assert manager.get_member_stats("lead-1").member_role == MemberRole.LEAD_DEV


def test_register_member_unknown_department(manager, make_member):
    with pytest.raises(NotFoundError):
        manager.register_member(make_member("m1", "dept-nowhere"))


def test_register_member_duplicate(manager, make_member):
    manager.register_member(make_member("m1"))
    with pytest.raises(AlreadyExistsError):
        manager.register_member(make_member("m1"))


def test_register_member_capacity(manager, make_member):
    for i in range(4):
        manager.register_member(make_member(f"sec-{i}", "dept-security", MemberRole.SECURITY))
    with pytest.raises(CapacityExceededError):
        manager.register_member(make_member("sec-4", "dept-security", MemberRole.SECURITY))
    assert len(manager.list_members("dept-security")) == 4


def test_unregister_member_with_tasks_fails(manager, make_member):
    manager.register_member(make_member("dev-1"))
    manager.create_task(Task(title="Build it", department_id="dept-dev"))

    with pytest.raises(HasActiveWorkError):
        manager.unregister_member("dev-1")
    assert manager.get_member("dev-1").load == 1


def test_unregister_unknown_member(manager):
    with pytest.raises(NotFoundError):
        manager.unregister_member("ghost")


def test_update_member_status_refreshes_last_seen(manager, make_member):
    before = manager.register_member(make_member("dev-1"))
    after = manager.update_member_status("dev-1", MemberStatus.OFFLINE)
    assert after.status == MemberStatus.OFFLINE
    assert after.last_seen >= before.last_seen
    assert manager.get_department_stats("dept-dev").active_members == 0


def test_getters_return_snapshots(manager, make_member):
    manager.register_member(make_member("dev-1"))
    snapshot = manager.get_member("dev-1")
    snapshot.current_tasks.append("bogus")
    snapshot.status = MemberStatus.UNHEALTHY

    live = manager.get_member("dev-1")
    assert live.current_tasks == []
    assert live.status == MemberStatus.ONLINE


# --- Tasks ---


def test_create_task_generates_id_and_forces_queued(manager):
    task = manager.create_task(Task(title="Document API", status=TaskStatus.COMPLETED, type="docs"))
    assert task.id.startswith("task-")
    assert task.status == TaskStatus.QUEUED
    assert task.completed_at is None


def test_create_task_rejects_unknown_department(manager):
    with pytest.raises(NotFoundError):
        manager.create_task(Task(title="x", department_id="dept-nowhere"))
    assert manager.list_tasks() == []


def test_create_task_rejects_duplicate_id(manager):
    manager.create_task(Task(id="task-1", title="x", type="docs"))
    with pytest.raises(AlreadyExistsError):
        manager.create_task(Task(id="task-1", title="y", type="docs"))


def test_create_task_infers_type(manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Fix login bug"))
    assert task.type == "bug_fix"
    assert task.department_id == "dept-dev"
    assert task.assigned_member == "dev-1"
    assert task.status == TaskStatus.ASSIGNED


def test_unroutable_task_stays_queued(manager):
    task = manager.create_task(Task(title="Ponder", type="philosophy"))
    assert task.status == TaskStatus.QUEUED
    assert task.department_id == ""


def test_task_lifecycle_timestamps_and_release(manager, make_member):
    manager.register_member(make_member("dev-1", max_concurrent=1))
    task = manager.create_task(Task(title="Build", department_id="dept-dev"))
    assert manager.get_member("dev-1").status == MemberStatus.BUSY

    started = manager.update_task_status(task.id, TaskStatus.IN_PROGRESS)
    again = manager.update_task_status(task.id, TaskStatus.IN_PROGRESS)
    assert started.started_at is not None
    assert again.started_at == started.started_at

    done = manager.update_task_status(task.id, TaskStatus.COMPLETED, {"response": "ok"})
    assert done.completed_at is not None
    assert done.results == {"response": "ok"}

    member = manager.get_member("dev-1")
    assert member.current_tasks == []
    assert member.status == MemberStatus.ONLINE

    stats = manager.get_member_stats("dev-1")
    assert (stats.total_tasks, stats.completed_tasks, stats.failed_tasks) == (1, 1, 0)
    assert stats.success_rate == 1.0
    assert stats.current_load == 0


def test_repeated_terminal_status_merges_results_only(manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Build", department_id="dept-dev"))
    first = manager.update_task_status(task.id, TaskStatus.FAILED, {"error": "boom"})
    second = manager.update_task_status(task.id, TaskStatus.FAILED, {"retry": False})

    assert second.completed_at == first.completed_at
    assert second.results == {"error": "boom", "retry": False}
    stats = manager.get_member_stats("dev-1")
    assert (stats.total_tasks, stats.failed_tasks) == (1, 1)
    assert stats.success_rate == 0.0


def test_terminal_task_cannot_reopen(manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="Build", department_id="dept-dev"))
    manager.update_task_status(task.id, TaskStatus.COMPLETED)
    with pytest.raises(InvalidTransitionError):
        manager.update_task_status(task.id, TaskStatus.IN_PROGRESS)


def test_update_unknown_task(manager):
    with pytest.raises(NotFoundError):
        manager.update_task_status("task-missing", TaskStatus.COMPLETED)


def test_list_tasks_filters(manager, make_member):
    manager.register_member(make_member("dev-1"))
    a = manager.create_task(Task(title="a", department_id="dept-dev"))
    manager.create_task(Task(title="b", department_id="dept-qa"))
    manager.update_task_status(a.id, TaskStatus.IN_PROGRESS)

    assert [t.id for t in manager.list_tasks(status=TaskStatus.IN_PROGRESS)] == [a.id]
    # No QA members, so fallback moved b onto dev-1 in dept-dev.
    assert [t.id for t in manager.list_tasks(department_id="dept-qa")] == []
    b = manager.list_tasks(status=TaskStatus.ASSIGNED)
    assert [(t.assigned_member, t.department_id) for t in b] == [("dev-1", "dept-dev")]
    assert {t.id for t in manager.list_tasks(department_id="dept-dev")} == {a.id, b[0].id}


def test_delete_task(manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="a", department_id="dept-dev"))
    with pytest.raises(HasActiveWorkError):
        manager.delete_task(task.id)
    manager.update_task_status(task.id, TaskStatus.COMPLETED)
    manager.delete_task(task.id)
    with pytest.raises(NotFoundError):
        manager.get_task(task.id)


def test_dispatch_queued_tasks_by_priority(manager, make_member):
    low = manager.create_task(Task(title="low", department_id="dept-dev", priority=Priority.LOW))
    critical = manager.create_task(Task(title="crit", department_id="dept-dev", priority=Priority.CRITICAL))

    manager.register_member(make_member("dev-1", max_concurrent=1))
    assert manager.dispatch_queued_tasks() == 1

    assert manager.get_task(critical.id).assigned_member == "dev-1"
    assert manager.get_task(low.id).status == TaskStatus.QUEUED


# --- Statistics ---


def test_department_stats_counts_only_department_members(manager, make_member):
    manager.register_member(make_member("dev-1"))
    manager.register_member(make_member("dev-2", role=MemberRole.LEAD_DEV))
    manager.register_member(make_member("qa-1", "dept-qa", MemberRole.QA))

    stats = manager.get_department_stats("dept-dev")
    assert stats.total_members == 2
    assert stats.active_members == 2
    assert stats.role_distribution == {"developer": 1, "lead_dev": 1}


def test_update_all_statistics_is_idempotent(manager, make_member):
    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="a", department_id="dept-dev"))
    manager.update_task_status(task.id, TaskStatus.IN_PROGRESS)
    manager.update_task_status(task.id, TaskStatus.COMPLETED)

    manager.update_all_statistics()
    first = (manager.get_department_stats("dept-dev"), manager.get_member_stats("dev-1"))
    manager.update_all_statistics()
    second = (manager.get_department_stats("dept-dev"), manager.get_member_stats("dev-1"))

    assert first == second
    assert second[0].completed_tasks == 1
    assert second[0].success_rate == 1.0


# --- Teams & workflows ---


def test_create_team_sets_back_references(manager, make_member):
    manager.register_member(make_member("lead-1", role=MemberRole.LEAD_DEV))
    manager.register_member(make_member("dev-1"))
    manager.register_member(make_member("dev-2"))

    team = manager.create_team(Team(id="team-a", name="A", department_id="dept-dev",
                                    lead_id="lead-1", member_ids=["dev-1", "dev-2"]))
    assert team.lead_role == MemberRole.LEAD_DEV
    assert team.roles == [MemberRole.LEAD_DEV, MemberRole.DEVELOPER]
    assert manager.get_member("dev-1").reports_to == "lead-1"
    assert manager.get_member("lead-1").team_members == ["dev-1", "dev-2"]

    manager.unregister_member("dev-2")
    assert manager.get_team("team-a").member_ids == ["dev-1"]
    assert manager.get_member("lead-1").team_members == ["dev-1"]


def test_create_team_unknown_member(manager):
    with pytest.raises(NotFoundError):
        manager.create_team(Team(id="t", name="t", department_id="dept-dev", member_ids=["ghost"]))


def test_workflows(manager):
    manager.register_workflow(Workflow(id="wf-1", name="Bug flow", task_type="bug_fix",
                                       required_roles=[MemberRole.DEVELOPER]))
    assert manager.find_workflow("bug_fix").id == "wf-1"
    assert manager.find_workflow("deployment") is None
    assert [w.id for w in manager.list_workflows()] == ["wf-1"]
    with pytest.raises(AlreadyExistsError):
        manager.register_workflow(Workflow(id="wf-1", name="dup", task_type="x"))


# --- Events ---


async def test_mutations_publish_events(manager, make_member):
    members = manager.subscribe_member_events()
    tasks = manager.subscribe_task_events()

    manager.register_member(make_member("dev-1"))
    task = manager.create_task(Task(title="a", department_id="dept-dev"))
    manager.update_task_status(task.id, TaskStatus.COMPLETED)

    member_events = [(e.type, e.payload.load) for e in members.drain()]
    assert member_events == [
        (EventType.CREATED, 0),
        (EventType.UPDATED, 1),
        (EventType.UPDATED, 0),
    ]
    task_events = [(e.type, e.payload.status) for e in tasks.drain()]
    assert task_events == [
        (EventType.CREATED, TaskStatus.ASSIGNED),
        (EventType.UPDATED, TaskStatus.COMPLETED),
    ]


async def test_event_payloads_are_snapshots(manager, make_member):
    sub = manager.subscribe_member_events()
    manager.register_member(make_member("dev-1"))
    manager.update_member_status("dev-1", MemberStatus.OFFLINE)

    created, updated = sub.drain()
    assert created.payload.status == MemberStatus.ONLINE
    assert updated.payload.status == MemberStatus.OFFLINE


async def test_department_events(manager):
    sub = manager.subscribe_department_events()
    manager.add_department(DepartmentDefinition(id="dept-x", name="X", type=DepartmentType.QA))
    manager.remove_department("dept-x")
    assert [e.type for e in sub.drain()] == [EventType.CREATED, EventType.DELETED]


# --- Lifecycle ---


async def test_start_twice_fails_and_stop_closes_streams(make_manager, make_config):
    manager = make_manager(make_config(stats_interval=0.01))
    sub = manager.subscribe_task_events()
    await manager.start()
    with pytest.raises(ManagerStateError):
        await manager.start()

    await asyncio.sleep(0.03)
    await manager.stop()
    assert not manager.is_running
    assert await sub.get(timeout=1) is None


async def test_stopped_manager_cannot_restart(make_manager, make_config):
    manager = make_manager(make_config(stats_interval=0.01))
    await manager.start()
    await manager.stop()

    with pytest.raises(ManagerStateError, match="cannot be restarted"):
        await manager.start()
    assert not manager.is_running


async def test_maintenance_loop_dispatches_queued(make_manager, make_config, make_member):
    manager = make_manager(make_config(stats_interval=0.01))
    task = manager.create_task(Task(title="a", department_id="dept-dev"))
    manager.register_member(make_member("dev-1"))

    await manager.start()
    try:
        for _ in range(100):
            if manager.get_task(task.id).status == TaskStatus.ASSIGNED:
                break
            await asyncio.sleep(0.01)
    finally:
        await manager.stop()
    assert manager.get_task(task.id).assigned_member == "dev-1"
