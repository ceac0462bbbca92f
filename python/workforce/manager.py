"""
Registry core: departments, members, tasks, teams and workflows.

``DepartmentManager`` owns every entity map behind a single re-entrant lock.
All reads and writes take the lock, including the router's in-place
mutations, so observers never see a half-applied assignment. Callers get
deep-copied snapshots; live objects never leave this module except through
the ``RegistryView`` handed to the router under the lock.
"""

import asyncio
import copy
import logging
import random
import statistics
import threading
from typing import Any, Callable, Dict, List, Optional

import httpx

from workforce.config import DepartmentConfig, DepartmentDefinition, default_departments
from workforce.enhanced_logging import track_performance
from workforce.events import Broker, EventType, Subscription
from workforce.exceptions import (
    AlreadyExistsError,
    CapacityExceededError,
    ConfigurationError,
    HasActiveWorkError,
    InvalidTransitionError,
    ManagerStateError,
    NotFoundError,
    RoutingError,
)
from workforce.health import HealthChecker
from workforce.intake import determine_task_type
from workforce.models import (
    Department,
    DepartmentStats,
    Member,
    MemberStats,
    MemberStatus,
    Task,
    TaskStatus,
    Team,
    Workflow,
    generate_task_id,
    utcnow,
)
from workforce.router import RegistryView, TaskRouter
from workforce.scaler import AutoScaler

logger = logging.getLogger(__name__)

ACTIVE_MEMBER_STATUSES = (MemberStatus.ONLINE, MemberStatus.BUSY)
ACTIVE_TASK_STATUSES = (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


class DepartmentManager:
    """Single source of truth for the workforce registry."""

    def __init__(
        self,
        config: Optional[DepartmentConfig] = None,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.config = config or DepartmentConfig()

        # ── Concurrency ─────────────────────────────────────────────────
        self._lock = threading.RLock()

        self._departments: Dict[str, Department] = {}
        self._members: Dict[str, Member] = {}
        self._tasks: Dict[str, Task] = {}
        self._teams: Dict[str, Team] = {}
        self._workflows: Dict[str, Workflow] = {}
        self._department_stats: Dict[str, DepartmentStats] = {}
        self._member_stats: Dict[str, MemberStats] = {}
        self._view = RegistryView(self._departments, self._members, self._member_stats)

        buffer_size = self.config.event_buffer_size
        self.department_events: Broker[Department] = Broker("department", buffer_size)
        self.member_events: Broker[Member] = Broker("member", buffer_size)
        self.task_events: Broker[Task] = Broker("task", buffer_size)

        self.router = TaskRouter(self.config.task_routing, rng=rng)
        self.health_checker = HealthChecker(self, self.config.health_check, client=http_client)
        self.auto_scaler = AutoScaler(
            self, self.config.auto_scaling, role_definitions=self.config.roles, clock=clock
        )

        self._running = False
        self._stopped = False
        self._stop_event: Optional[asyncio.Event] = None
        self._maintenance_task: Optional[asyncio.Task] = None

        for definition in self.config.departments or default_departments():
            self._departments[definition.id] = definition.to_department()
            self._department_stats[definition.id] = DepartmentStats(department_id=definition.id)
        logger.info("Department manager initialized with %d departments", len(self._departments))

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def is_running(self) -> bool:
        return self._running

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self) -> None:
        if self._running:
            raise ManagerStateError("department manager is already running")
        if self._stopped:
            raise ManagerStateError("department manager was stopped and cannot be restarted")
        self._running = True
        self._stop_event = asyncio.Event()
        self._maintenance_task = asyncio.create_task(self._maintenance_loop())
        if self.config.health_check.enabled:
            await self.health_checker.start()
        if self.config.auto_scaling.enabled:
            await self.auto_scaler.start()
        logger.info("Department manager started")

    async def stop(self) -> None:
        """Stop background loops and end every event subscription.

        The event brokers stay shut, so a stopped manager cannot be started again.
        """
        if not self._running:
            return
        self._running = False
        self._stopped = True
        if self._stop_event is not None:
            self._stop_event.set()
        if self._maintenance_task is not None:
            await self._maintenance_task
            self._maintenance_task = None
        await self.health_checker.stop()
        await self.auto_scaler.stop()
        for broker in (self.department_events, self.member_events, self.task_events):
            broker.shutdown()
        logger.info("Department manager stopped")

    async def _maintenance_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.stats_interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                self.run_maintenance()
            except Exception:
                logger.exception("Maintenance pass failed")

    @track_performance(operation="registry.maintenance", slow_after=1.0)
    def run_maintenance(self) -> int:
        """One statistics refresh plus queued-task dispatch; returns tasks placed."""
        self.update_all_statistics()
        return self.dispatch_queued_tasks()

    # ========================================================================
    # Departments
    # ========================================================================

    def add_department(self, definition: DepartmentDefinition) -> Department:
        with self._lock:
            if definition.id in self._departments:
                raise AlreadyExistsError("department", definition.id)
            department = definition.to_department()
            self._departments[department.id] = department
            self._department_stats[department.id] = DepartmentStats(department_id=department.id)
            self._publish(self.department_events, EventType.CREATED, department)
            logger.info("Department added: id=%s type=%s", department.id, department.type.value)
            return copy.deepcopy(department)

    def update_department(
        self,
        department_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        capabilities: Optional[List[str]] = None,
        min_members: Optional[int] = None,
        max_members: Optional[int] = None,
        auto_scale: Optional[bool] = None,
    ) -> Department:
        with self._lock:
            department = self._require_department(department_id)
            new_min = department.min_members if min_members is None else min_members
            new_max = department.max_members if max_members is None else max_members
            if new_min < 0 or new_max < 1 or new_min > new_max:
                raise ConfigurationError(
                    f"invalid member bounds for {department_id}: min={new_min} max={new_max}"
                )
            department.min_members = new_min
            department.max_members = new_max
            if name is not None:
                department.name = name
            if description is not None:
                department.description = description
            if capabilities is not None:
                department.capabilities = list(capabilities)
            if auto_scale is not None:
                department.auto_scale = auto_scale
            department.updated_at = utcnow()
            self._publish(self.department_events, EventType.UPDATED, department)
            return copy.deepcopy(department)

    def remove_department(self, department_id: str) -> None:
        with self._lock:
            department = self._require_department(department_id)
            members = self._department_members(department_id)
            if members:
                raise HasActiveWorkError(
                    f"department {department_id} still has {len(members)} members",
                    details={"department_id": department_id, "members": [m.id for m in members]},
                )
            pending = [
                t.id for t in self._tasks.values()
                if t.department_id == department_id and not t.status.is_terminal
            ]
            if pending:
                raise HasActiveWorkError(
                    f"department {department_id} still has {len(pending)} open tasks",
                    details={"department_id": department_id, "tasks": pending},
                )
            del self._departments[department_id]
            self._department_stats.pop(department_id, None)
            self._publish(self.department_events, EventType.DELETED, department)
            logger.info("Department removed: id=%s", department_id)

    def get_department(self, department_id: str) -> Department:
        with self._lock:
            return copy.deepcopy(self._require_department(department_id))

    def list_departments(self) -> List[Department]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._departments.values()]

    def get_department_stats(self, department_id: str) -> DepartmentStats:
        with self._lock:
            self._require_department(department_id)
            return copy.deepcopy(self._department_stats[department_id])

    # ========================================================================
    # Members
    # ========================================================================

    def register_member(self, member: Member) -> Member:
        """Add a member to its department; it starts online with no tasks.

        Raises:
            NotFoundError: unknown department.
            AlreadyExistsError: a member with this id is registered.
            CapacityExceededError: the department is at max_members.
        """
        with self._lock:
            department = self._require_department(member.department_id)
            if member.id in self._members:
                raise AlreadyExistsError("member", member.id)
            count = len(self._department_members(department.id))
            if count >= department.max_members:
                raise CapacityExceededError(
                    f"department {department.id} has reached maximum capacity ({department.max_members})",
                    details={"department_id": department.id, "max_members": department.max_members},
                )

            member = copy.deepcopy(member)
            now = utcnow()
            member.joined_at = now
            member.last_seen = now
            member.status = MemberStatus.ONLINE
            member.department_type = department.type
            member.is_lead = member.role.is_lead
            member.current_tasks = []
            self._members[member.id] = member
            self._member_stats[member.id] = MemberStats(member_id=member.id, member_role=member.role)
            self._refresh_department_stats(department.id)

            self._publish(self.member_events, EventType.CREATED, member)
            logger.info(
                "Member registered: id=%s name=%s role=%s department=%s",
                member.id, member.name, member.role.value, department.id,
            )
            return copy.deepcopy(member)

    def unregister_member(self, member_id: str) -> None:
        with self._lock:
            member = self._require_member(member_id)
            if member.current_tasks:
                raise HasActiveWorkError(
                    f"member {member_id} has {len(member.current_tasks)} active tasks",
                    details={"member_id": member_id, "tasks": list(member.current_tasks)},
                )
            del self._members[member_id]
            self._member_stats.pop(member_id, None)
            self._detach_from_teams(member_id)
            self._refresh_department_stats(member.department_id)

            self._publish(self.member_events, EventType.DELETED, member)
            logger.info("Member unregistered: id=%s department=%s", member_id, member.department_id)

    def update_member_status(self, member_id: str, status: MemberStatus) -> Member:
        with self._lock:
            member = self._require_member(member_id)
            previous = member.status
            member.status = status
            member.last_seen = utcnow()
            self._refresh_department_stats(member.department_id)
            self._publish(self.member_events, EventType.UPDATED, member)
            if previous != status:
                logger.info(
                    "Member status changed: id=%s from=%s to=%s",
                    member_id, previous.value, status.value,
                )
            return copy.deepcopy(member)

    def update_member_health(
        self,
        member_id: str,
        health_score: float,
        performance: Optional[Dict[str, float]] = None,
    ) -> Member:
        """Record the latest probe outcome on the member record."""
        with self._lock:
            member = self._require_member(member_id)
            member.health_score = max(0.0, min(1.0, health_score))
            if performance:
                member.performance.update(performance)
            self._publish(self.member_events, EventType.UPDATED, member)
            return copy.deepcopy(member)

    def get_member(self, member_id: str) -> Member:
        with self._lock:
            return copy.deepcopy(self._require_member(member_id))

    def list_members(self, department_id: Optional[str] = None) -> List[Member]:
        with self._lock:
            return [
                copy.deepcopy(m)
                for m in self._members.values()
                if department_id is None or m.department_id == department_id
            ]

    def get_member_stats(self, member_id: str) -> MemberStats:
        with self._lock:
            stats = self._member_stats.get(member_id)
            if stats is None:
                raise NotFoundError("member", member_id)
            return copy.deepcopy(stats)

    # ========================================================================
    # Tasks
    # ========================================================================

    def create_task(self, task: Task) -> Task:
        """Store a new task as queued and try to route it immediately.

        Routing failures are logged and leave the task queued; only an
        unknown department or a duplicate id fails the call.
        """
        with self._lock:
            task = copy.deepcopy(task)
            if not task.id:
                task.id = generate_task_id()
                while task.id in self._tasks:
                    task.id = generate_task_id()
            elif task.id in self._tasks:
                raise AlreadyExistsError("task", task.id)

            if task.department_id and task.department_id not in self._departments:
                raise NotFoundError("department", task.department_id)

            now = utcnow()
            task.created_at = now
            task.updated_at = now
            task.status = TaskStatus.QUEUED
            task.assigned_member = ""
            task.started_at = None
            task.completed_at = None
            if not task.type:
                task.type = determine_task_type(task.text)
            self._tasks[task.id] = task

            member = self._route(task)
            if task.department_id:
                self._refresh_department_stats(task.department_id)

            self._publish(self.task_events, EventType.CREATED, task)
            if member is not None:
                self._publish(self.member_events, EventType.UPDATED, member)
            logger.info(
                "Task created: id=%s type=%s priority=%s status=%s",
                task.id, task.type, task.priority.value, task.status.value,
            )
            return copy.deepcopy(task)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        results: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Apply a status transition and merge results.

        The first move into a terminal state releases the member's slot and
        records the outcome in member stats; repeating that terminal status
        only merges results.
        """
        with self._lock:
            task = self._require_task(task_id)
            previous = task.status
            if previous.is_terminal and status != previous:
                raise InvalidTransitionError(
                    f"task {task_id} is {previous.value} and cannot move to {status.value}",
                    details={"task_id": task_id, "from": previous.value, "to": status.value},
                )

            now = utcnow()
            task.status = status
            task.updated_at = now
            if status == TaskStatus.IN_PROGRESS and task.started_at is None:
                task.started_at = now

            released: Optional[Member] = None
            if status.is_terminal and not previous.is_terminal:
                task.completed_at = now
                if task.started_at is not None:
                    task.actual_hours = (now - task.started_at).total_seconds() / 3600
                member = self._members.get(task.assigned_member)
                if member is not None and self.router.release_task(member, task.id, self._view):
                    self._record_outcome(member, task)
                    released = member
                self._refresh_department_stats(task.department_id)

            if results:
                task.results.update(results)

            self._publish(self.task_events, EventType.UPDATED, task)
            if released is not None:
                self._publish(self.member_events, EventType.UPDATED, released)
            logger.info("Task status updated: id=%s from=%s to=%s", task_id, previous.value, status.value)
            return copy.deepcopy(task)

    def reassign_task(self, task_id: str, reason: str = "") -> Task:
        """Move a non-terminal task to another member.

        Raises:
            NotFoundError: unknown task.
            InvalidTransitionError: the task already finished.
            RoutingError: no new member; the task is left queued.
        """
        with self._lock:
            task = self._require_task(task_id)
            if task.status.is_terminal:
                raise InvalidTransitionError(f"task {task_id} is {task.status.value} and cannot be reassigned")
            previous = self._members.get(task.assigned_member) if task.assigned_member else None
            origin = task.department_id
            try:
                _, member = self.router.reassign_task(task, self._view, reason)
            except RoutingError:
                self._publish(self.task_events, EventType.UPDATED, task)
                if previous is not None:
                    self._publish(self.member_events, EventType.UPDATED, previous)
                raise
            self._refresh_department_stats(task.department_id)
            if origin != task.department_id:
                self._refresh_department_stats(origin)
            self._publish(self.task_events, EventType.UPDATED, task)
            if previous is not None and previous is not member:
                self._publish(self.member_events, EventType.UPDATED, previous)
            self._publish(self.member_events, EventType.UPDATED, member)
            return copy.deepcopy(task)

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            task = self._require_task(task_id)
            if task.status in ACTIVE_TASK_STATUSES:
                raise HasActiveWorkError(
                    f"task {task_id} is {task.status.value}",
                    details={"task_id": task_id, "status": task.status.value},
                )
            del self._tasks[task_id]
            if task.department_id in self._departments:
                self._refresh_department_stats(task.department_id)
            self._publish(self.task_events, EventType.DELETED, task)

    def dispatch_queued_tasks(self) -> int:
        """Route every queued task again, most urgent and oldest first."""
        with self._lock:
            queued = sorted(
                (t for t in self._tasks.values() if t.status == TaskStatus.QUEUED),
                key=lambda t: (t.priority.rank, t.created_at),
            )
            placed = 0
            for task in queued:
                origin = task.department_id
                try:
                    member = self.router.route_task(task, self._view)
                except RoutingError as e:
                    logger.debug("Queued task still unplaced: id=%s reason=%s", task.id, e.message)
                    continue
                placed += 1
                if origin and origin != task.department_id:
                    self._refresh_department_stats(origin)
                self._refresh_department_stats(task.department_id)
                self._publish(self.task_events, EventType.UPDATED, task)
                self._publish(self.member_events, EventType.UPDATED, member)
            if placed:
                logger.info("Dispatched %d of %d queued tasks", placed, len(queued))
            return placed

    def get_task(self, task_id: str) -> Task:
        with self._lock:
            return copy.deepcopy(self._require_task(task_id))

    def list_tasks(
        self,
        department_id: Optional[str] = None,
        status: Optional[TaskStatus] = None,
    ) -> List[Task]:
        with self._lock:
            return [
                copy.deepcopy(t)
                for t in self._tasks.values()
                if (department_id is None or t.department_id == department_id)
                and (status is None or t.status == status)
            ]

    # ========================================================================
    # Teams & workflows
    # ========================================================================

    def create_team(self, team: Team) -> Team:
        """Register a team and point its members at the lead.

        ``reports_to`` and ``team_members`` are lookup-only back references.
        """
        with self._lock:
            self._require_department(team.department_id)
            if team.id in self._teams:
                raise AlreadyExistsError("team", team.id)
            team = copy.deepcopy(team)
            lead = self._require_member(team.lead_id) if team.lead_id else None
            members = [self._require_member(member_id) for member_id in team.member_ids]

            roles = []
            for member in ([lead] if lead else []) + members:
                if member.role not in roles:
                    roles.append(member.role)
            team.roles = roles
            if lead is not None:
                team.lead_role = lead.role
                for member in members:
                    if member.id == lead.id:
                        continue
                    member.reports_to = lead.id
                    if member.id not in lead.team_members:
                        lead.team_members.append(member.id)
            self._teams[team.id] = team
            logger.info("Team created: id=%s lead=%s members=%d", team.id, team.lead_id, len(members))
            return copy.deepcopy(team)

    def get_team(self, team_id: str) -> Team:
        with self._lock:
            team = self._teams.get(team_id)
            if team is None:
                raise NotFoundError("team", team_id)
            return copy.deepcopy(team)

    def list_teams(self, department_id: Optional[str] = None) -> List[Team]:
        with self._lock:
            return [
                copy.deepcopy(t)
                for t in self._teams.values()
                if department_id is None or t.department_id == department_id
            ]

    def register_workflow(self, workflow: Workflow) -> Workflow:
        with self._lock:
            if workflow.id in self._workflows:
                raise AlreadyExistsError("workflow", workflow.id)
            self._workflows[workflow.id] = copy.deepcopy(workflow)
            return copy.deepcopy(workflow)

    def get_workflow(self, workflow_id: str) -> Workflow:
        with self._lock:
            workflow = self._workflows.get(workflow_id)
            if workflow is None:
                raise NotFoundError("workflow", workflow_id)
            return copy.deepcopy(workflow)

    def list_workflows(self) -> List[Workflow]:
        with self._lock:
            return [copy.deepcopy(w) for w in self._workflows.values()]

    def find_workflow(self, task_type: str) -> Optional[Workflow]:
        with self._lock:
            for workflow in self._workflows.values():
                if workflow.task_type == task_type:
                    return copy.deepcopy(workflow)
            return None

    # ========================================================================
    # Statistics
    # ========================================================================

    def update_all_statistics(self) -> None:
        """Recompute every department and member aggregate from the live maps."""
        with self._lock:
            for department_id in self._departments:
                self._refresh_department_stats(department_id)
            for member_id, member in self._members.items():
                stats = self._member_stats.get(member_id)
                if stats is not None and stats.current_load != member.load:
                    stats.current_load = member.load
                    stats.last_updated = utcnow()

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe_department_events(self) -> Subscription[Department]:
        return self.department_events.subscribe()

    def subscribe_member_events(self) -> Subscription[Member]:
        return self.member_events.subscribe()

    def subscribe_task_events(self) -> Subscription[Task]:
        return self.task_events.subscribe()

    # ========================================================================
    # Internals (caller holds the lock)
    # ========================================================================

    def _require_department(self, department_id: str) -> Department:
        department = self._departments.get(department_id)
        if department is None:
            raise NotFoundError("department", department_id)
        return department

    def _require_member(self, member_id: str) -> Member:
        member = self._members.get(member_id)
        if member is None:
            raise NotFoundError("member", member_id)
        return member

    def _require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError("task", task_id)
        return task

    def _department_members(self, department_id: str) -> List[Member]:
        return [m for m in self._members.values() if m.department_id == department_id]

    def _route(self, task: Task) -> Optional[Member]:
        try:
            return self.router.route_task(task, self._view)
        except RoutingError as e:
            logger.warning("Task left queued: id=%s reason=%s", task.id, e.message)
            return None

    def _record_outcome(self, member: Member, task: Task) -> None:
        stats = self._member_stats.get(member.id)
        if stats is None:
            return
        stats.total_tasks += 1
        if task.status == TaskStatus.COMPLETED:
            stats.completed_tasks += 1
            if task.started_at is not None and task.completed_at is not None:
                duration = (task.completed_at - task.started_at).total_seconds()
                stats.average_time += (duration - stats.average_time) / stats.completed_tasks
        else:
            stats.failed_tasks += 1
        stats.success_rate = stats.completed_tasks / stats.total_tasks
        stats.current_load = member.load
        if member.is_lead:
            stats.leadership_tasks += 1
        if member.reports_to or member.team_members:
            stats.team_tasks += 1
        stats.last_updated = utcnow()

    def _refresh_department_stats(self, department_id: str) -> None:
        if department_id not in self._departments:
            return
        members = self._department_members(department_id)
        tasks = [t for t in self._tasks.values() if t.department_id == department_id]
        completed = [t for t in tasks if t.status == TaskStatus.COMPLETED]
        failed = [t for t in tasks if t.status == TaskStatus.FAILED]
        durations = [
            (t.completed_at - t.started_at).total_seconds()
            for t in completed
            if t.started_at is not None and t.completed_at is not None
        ]
        role_distribution: Dict[str, int] = {}
        for member in members:
            role_distribution[member.role.value] = role_distribution.get(member.role.value, 0) + 1
        finished = len(completed) + len(failed)

        values = {
            "total_members": len(members),
            "active_members": sum(1 for m in members if m.status in ACTIVE_MEMBER_STATUSES),
            "role_distribution": role_distribution,
            "total_tasks": len(tasks),
            "completed_tasks": len(completed),
            "failed_tasks": len(failed),
            "average_response": statistics.fmean(durations) if durations else 0.0,
            "success_rate": len(completed) / finished if finished else 0.0,
        }
        stats = self._department_stats.setdefault(department_id, DepartmentStats(department_id=department_id))
        if any(getattr(stats, key) != value for key, value in values.items()):
            for key, value in values.items():
                setattr(stats, key, value)
            stats.last_updated = utcnow()

    def _detach_from_teams(self, member_id: str) -> None:
        for team in self._teams.values():
            if member_id in team.member_ids:
                team.member_ids.remove(member_id)
                team.updated_at = utcnow()
            if team.lead_id == member_id:
                team.lead_id = ""
                team.lead_role = None
                team.updated_at = utcnow()
        for member in self._members.values():
            if member.reports_to == member_id:
                member.reports_to = ""
            if member_id in member.team_members:
                member.team_members.remove(member_id)

    @staticmethod
    def _publish(broker: Broker, event_type: EventType, entity: Any) -> None:
        broker.publish(event_type, copy.deepcopy(entity))
