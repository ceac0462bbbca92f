"""
Department coordinator: the request-facing side of the registry.

Turns free-text requests into tasks, drives a task through execution with an
injected executor, waits on completion through task events, and summarises
department state. Executors are plain async callables, so anything from an
LLM agent to a shell job can do the work.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List

from workforce.events import Event, Subscription
from workforce.exceptions import TaskFailedError, WorkforceTimeoutError
from workforce.intake import build_task
from workforce.manager import DepartmentManager
from workforce.models import (
    Department,
    Member,
    MemberStatus,
    Priority,
    Task,
    TaskAttachment,
    TaskStatus,
)

logger = logging.getLogger(__name__)

Executor = Callable[[Task, Member], Awaitable[Dict[str, Any]]]

DEFAULT_TIMEOUT = 300.0


@dataclass
class TaskResult:
    task_id: str
    content: str = ""
    tool_calls: List[Any] = field(default_factory=list)
    member_id: str = ""
    execution_time: float = 0.0

    @classmethod
    def from_task(cls, task: Task) -> "TaskResult":
        results = task.results
        return cls(
            task_id=task.id,
            content=str(results.get("response", "")),
            tool_calls=list(results.get("tool_calls") or []),
            member_id=str(results.get("member_id", task.assigned_member)),
            execution_time=float(results.get("execution_time", 0.0) or 0.0),
        )


class DepartmentCoordinator:
    """Submits, executes and tracks tasks on top of a ``DepartmentManager``."""

    def __init__(self, manager: DepartmentManager):
        self.manager = manager
        self._listeners: List[asyncio.Task] = []
        self._subscriptions: List[Subscription] = []

    # ── Submission ──────────────────────────────────────────────────────

    def submit_request(
        self,
        prompt: str,
        requested_by: str = "user",
        attachments: Iterable[TaskAttachment] = (),
    ) -> Task:
        task = self.manager.create_task(build_task(prompt, requested_by, attachments))
        logger.info("Request submitted: task=%s type=%s status=%s", task.id, task.type, task.status.value)
        return task

    def create_customer_request(
        self,
        title: str,
        description: str,
        requested_by: str,
        priority: Priority = Priority.MEDIUM,
        attachments: Iterable[TaskAttachment] = (),
    ) -> Task:
        task = Task(
            title=title,
            description=description,
            type="customer_request",
            priority=priority,
            requested_by=requested_by,
            attachments=list(attachments),
            metadata={"source": "customer"},
        )
        return self.manager.create_task(task)

    # ── Execution ───────────────────────────────────────────────────────

    async def execute_task(self, task_id: str, executor: Executor) -> TaskResult:
        """Run an assigned task through ``executor`` and record the outcome.

        The executor receives snapshots of the task and its member and returns
        a mapping with ``response`` and optionally ``tool_calls``. Executor
        errors fail the task and propagate.
        """
        task = self.manager.get_task(task_id)
        if not task.assigned_member:
            raise TaskFailedError(f"task {task_id} has no assigned member", details={"task_id": task_id})
        member = self.manager.get_member(task.assigned_member)

        task = self.manager.update_task_status(task_id, TaskStatus.IN_PROGRESS)
        started = time.perf_counter()
        try:
            output = await executor(task, member)
        except Exception as e:
            logger.exception("Task execution failed: task=%s member=%s", task_id, member.id)
            self.manager.update_task_status(task_id, TaskStatus.FAILED, {"error": str(e)})
            raise

        output = output or {}
        results = {
            "response": output.get("response", ""),
            "tool_calls": output.get("tool_calls", []),
            "member_id": member.id,
            "member_role": member.role.value,
            "execution_time": time.perf_counter() - started,
        }
        task = self.manager.update_task_status(task_id, TaskStatus.COMPLETED, results)
        logger.info(
            "Task executed: task=%s member=%s duration=%.3fs",
            task_id, member.id, results["execution_time"],
        )
        return TaskResult.from_task(task)

    async def wait_for_completion(self, task_id: str, timeout: float = DEFAULT_TIMEOUT) -> TaskResult:
        """Block until the task completes; raises on failure or timeout."""
        return TaskResult.from_task(
            await self._wait_for(task_id, (TaskStatus.COMPLETED, TaskStatus.FAILED), timeout)
        )

    async def wait_for_assignment(self, task_id: str, timeout: float = DEFAULT_TIMEOUT) -> Task:
        return await self._wait_for(
            task_id,
            (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED),
            timeout,
        )

    async def run(
        self,
        prompt: str,
        executor: Executor,
        requested_by: str = "user",
        timeout: float = DEFAULT_TIMEOUT,
    ) -> TaskResult:
        """Submit a request, wait until someone owns it, then execute it."""
        task = self.submit_request(prompt, requested_by)
        task = await self.wait_for_assignment(task.id, timeout)
        if task.status == TaskStatus.COMPLETED:
            return TaskResult.from_task(task)
        return await self.execute_task(task.id, executor)

    async def _wait_for(self, task_id: str, statuses: Iterable[TaskStatus], timeout: float) -> Task:
        wanted = tuple(statuses)
        # Subscribe before the first read so no transition slips between them.
        subscription = self.manager.subscribe_task_events()
        try:
            task = self.manager.get_task(task_id)
            if task.status not in wanted:
                task = await asyncio.wait_for(self._next_matching(subscription, task_id, wanted), timeout)
        except asyncio.TimeoutError:
            raise WorkforceTimeoutError(
                f"timed out after {timeout}s waiting for task {task_id}",
                details={"task_id": task_id, "timeout": timeout},
            ) from None
        finally:
            subscription.close()

        if task.status == TaskStatus.FAILED and TaskStatus.FAILED in wanted:
            raise TaskFailedError(
                f"task {task_id} failed: {task.results.get('error', 'unknown error')}",
                details={"task_id": task_id, "results": task.results},
            )
        return task

    @staticmethod
    async def _next_matching(subscription: Subscription[Task], task_id: str, wanted: tuple) -> Task:
        async for event in subscription:
            if event.payload.id == task_id and event.payload.status in wanted:
                return event.payload
        raise WorkforceTimeoutError(f"event stream closed while waiting for task {task_id}")

    # ── Status ──────────────────────────────────────────────────────────

    def get_department_status(self) -> Dict[str, Dict[str, Any]]:
        """Per-department stats with member and task counts by state."""
        status: Dict[str, Dict[str, Any]] = {}
        with self.manager.lock:
            for department in self.manager.list_departments():
                members = self.manager.list_members(department.id)
                tasks = self.manager.list_tasks(department_id=department.id)
                status[department.id] = {
                    "department": department.to_dict(),
                    "stats": self.manager.get_department_stats(department.id).to_dict(),
                    "members": {
                        "total": len(members),
                        "online": sum(1 for m in members if m.status == MemberStatus.ONLINE),
                        "busy": sum(1 for m in members if m.status == MemberStatus.BUSY),
                        "offline": sum(
                            1 for m in members
                            if m.status in (MemberStatus.OFFLINE, MemberStatus.UNHEALTHY)
                        ),
                    },
                    "tasks": {
                        "total": len(tasks),
                        "queued": sum(1 for t in tasks if t.status == TaskStatus.QUEUED),
                        "active": sum(
                            1 for t in tasks
                            if t.status in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)
                        ),
                        "completed": sum(1 for t in tasks if t.status == TaskStatus.COMPLETED),
                        "failed": sum(1 for t in tasks if t.status == TaskStatus.FAILED),
                    },
                }
        return status

    # ── Event logging ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Start background consumers that log registry events."""
        if self._listeners:
            return
        streams = [
            (self.manager.subscribe_department_events(), self._log_department_event),
            (self.manager.subscribe_member_events(), self._log_member_event),
            (self.manager.subscribe_task_events(), self._log_task_event),
        ]
        for subscription, handler in streams:
            self._subscriptions.append(subscription)
            self._listeners.append(asyncio.create_task(self._consume(subscription, handler)))
        logger.info("Department coordinator started")

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            subscription.close()
        if self._listeners:
            await asyncio.gather(*self._listeners)
        self._subscriptions.clear()
        self._listeners.clear()
        logger.info("Department coordinator stopped")

    @staticmethod
    async def _consume(subscription: Subscription, handler: Callable[[Event], None]) -> None:
        async for event in subscription:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event.type.value)

    @staticmethod
    def _log_department_event(event: Event[Department]) -> None:
        department = event.payload
        logger.info("Department event: type=%s department=%s", event.type.value, department.id)

    @staticmethod
    def _log_member_event(event: Event[Member]) -> None:
        member = event.payload
        logger.info(
            "Member event: type=%s member=%s role=%s status=%s",
            event.type.value, member.id, member.role.value, member.status.value,
        )

    @staticmethod
    def _log_task_event(event: Event[Task]) -> None:
        task = event.payload
        logger.info(
            "Task event: type=%s task=%s status=%s member=%s",
            event.type.value, task.id, task.status.value, task.assigned_member,
        )
