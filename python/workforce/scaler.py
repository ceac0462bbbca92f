"""Utilization-driven auto-scaling of department head-count.

Utilization is in-progress tasks over ``active members x 5``. Above the
scale-up threshold the scaler synthesizes a member; below the scale-down
threshold it retires an idle one. Each department then sits out a cooldown.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

from workforce.config import AutoScalingConfig, RoleDefinition
from workforce.enhanced_logging import track_performance
from workforce.exceptions import WorkforceError
from workforce.models import (
    Department,
    DepartmentType,
    Member,
    MemberRole,
    TaskStatus,
    utcnow,
)
from workforce.roles import (
    DEPARTMENT_ROLE_ROTATION,
    capabilities_for,
    max_concurrent_for,
    role_fits_department,
    specializations_for,
)

if TYPE_CHECKING:
    from workforce.manager import DepartmentManager

logger = logging.getLogger(__name__)

TASKS_PER_MEMBER = 5


class ScalingAction(str, Enum):
    NONE = "none"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


@dataclass
class ScalingDecision:
    department_id: str
    action: ScalingAction
    reason: str = ""
    utilization: float = 0.0
    active_members: int = 0
    total_members: int = 0
    member_id: str = ""


def compute_utilization(in_progress: int, active_members: int) -> float:
    if active_members == 0:
        return float("inf") if in_progress else 0.0
    return in_progress / (active_members * TASKS_PER_MEMBER)


class AutoScaler:
    """Periodically grows and shrinks auto-scaling departments."""

    def __init__(
        self,
        manager: "DepartmentManager",
        config: AutoScalingConfig,
        role_definitions: Optional[Dict[MemberRole, RoleDefinition]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._manager = manager
        self.config = config
        self._role_definitions = role_definitions or {}
        self._clock = clock or time.monotonic
        self._last_scaled: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None
        self.is_running = False

    async def start(self) -> None:
        if self.is_running:
            return
        self.is_running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Auto-scaler started: interval=%.1fs up=%.2f down=%.2f",
            self.config.check_interval, self.config.scale_up_threshold, self.config.scale_down_threshold,
        )

    async def stop(self) -> None:
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
        logger.info("Auto-scaler stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.check_interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                self.check_and_scale()
            except Exception:
                logger.exception("Auto-scaling round failed")

    # ── Evaluation ──────────────────────────────────────────────────────

    @track_performance(operation="scaler.check_and_scale", slow_after=5.0)
    def check_and_scale(self) -> List[ScalingDecision]:
        """One scaling round; returns the actions that were carried out."""
        self._manager.update_all_statistics()
        executed = []
        for department in self._manager.list_departments():
            if not department.auto_scale:
                continue
            if self.in_cooldown(department.id):
                logger.debug("Department in cooldown: id=%s", department.id)
                continue

            decision = self.evaluate_department(department)
            if decision.action == ScalingAction.NONE:
                continue
            try:
                acted = self.execute(decision, department)
            except WorkforceError as e:
                logger.warning(
                    "Scaling action failed: department=%s action=%s error=%s",
                    department.id, decision.action.value, e.message,
                )
                continue
            if acted:
                with self._lock:
                    self._last_scaled[department.id] = self._clock()
                executed.append(decision)
        return executed

    def evaluate_department(self, department: Department) -> ScalingDecision:
        with self._manager.lock:
            stats = self._manager.get_department_stats(department.id)
            total = len(self._manager.list_members(department.id))
            in_progress = len(
                self._manager.list_tasks(department_id=department.id, status=TaskStatus.IN_PROGRESS)
            )

        active = stats.active_members
        utilization = compute_utilization(in_progress, active)
        decision = ScalingDecision(
            department_id=department.id,
            action=ScalingAction.NONE,
            utilization=utilization,
            active_members=active,
            total_members=total,
        )

        if self.config.enforce_min_members and total < department.min_members and total < department.max_members:
            decision.action = ScalingAction.SCALE_UP
            decision.reason = "below_minimum"
        elif (
            utilization > self.config.scale_up_threshold
            and active < self.config.max_members_per_department
            and total < department.max_members
        ):
            decision.action = ScalingAction.SCALE_UP
            decision.reason = "high_utilization"
        elif utilization < self.config.scale_down_threshold and active > department.min_members:
            decision.action = ScalingAction.SCALE_DOWN
            decision.reason = "low_utilization"
        return decision

    def execute(self, decision: ScalingDecision, department: Department) -> bool:
        if decision.action == ScalingAction.SCALE_UP:
            member = self.scale_up(department, decision.reason)
        elif decision.action == ScalingAction.SCALE_DOWN:
            member = self.scale_down(department)
        else:
            return False
        if member is None:
            return False
        decision.member_id = member.id
        return True

    def in_cooldown(self, department_id: str) -> bool:
        with self._lock:
            last = self._last_scaled.get(department_id)
        return last is not None and self._clock() - last < self.config.cooldown_period

    # ── Scale up ────────────────────────────────────────────────────────

    def scale_up(self, department: Department, reason: str = "high_utilization") -> Member:
        role = self.determine_role_to_add(department)
        member = self.build_member(department, role, reason)
        registered = self._manager.register_member(member)
        logger.info(
            "Scaled up: department=%s member=%s role=%s reason=%s",
            department.id, registered.id, role.value, reason,
        )
        return registered

    def determine_role_to_add(self, department: Department) -> MemberRole:
        counts = Counter(m.role for m in self._manager.list_members(department.id))
        for role, desired in self.config.role_scaling.items():
            if self._role_fits(role, department.type) and counts[role] < desired:
                return role

        rotation = DEPARTMENT_ROLE_ROTATION.get(department.type) or [MemberRole.DEVELOPER]
        best = rotation[0]
        for role in rotation[1:]:
            if counts[role] < counts[best]:
                best = role
        return best

    def build_member(self, department: Department, role: MemberRole, reason: str) -> Member:
        definition = self._role_definitions.get(role)
        if definition is not None and definition.required_skills:
            specializations = list(definition.required_skills)
        else:
            specializations = specializations_for(role)
        max_concurrent = definition.max_concurrent if definition is not None else max_concurrent_for(role)

        return Member(
            id=f"member-{department.id}-{uuid.uuid4().hex[:8]}",
            name=f"Auto-Scaled {role.value}",
            role=role,
            department_id=department.id,
            specializations=specializations,
            max_concurrent=max_concurrent,
            endpoint=self.config.member_endpoint_template.format(department_id=department.id),
            auth_method="api-key",
            health_score=1.0,
            capabilities=capabilities_for(role),
            metadata={
                "auto_scaled": "true",
                "created_at": utcnow().isoformat(),
                "scaling_reason": reason,
            },
        )

    def _role_fits(self, role: MemberRole, department_type: DepartmentType) -> bool:
        definition = self._role_definitions.get(role)
        if definition is not None and definition.department_types:
            return department_type in definition.department_types
        return role_fits_department(role, department_type)

    # ── Scale down ──────────────────────────────────────────────────────

    def scale_down(self, department: Department) -> Optional[Member]:
        # Held across selection and removal so the candidate stays idle.
        with self._manager.lock:
            candidate = self.select_member_to_remove(department, self._manager.list_members(department.id))
            if candidate is None:
                logger.info("No member eligible for scale down: department=%s", department.id)
                return None
            self._manager.unregister_member(candidate.id)
        logger.info(
            "Scaled down: department=%s member=%s role=%s",
            department.id, candidate.id, candidate.role.value,
        )
        return candidate

    @staticmethod
    def select_member_to_remove(department: Department, members: List[Member]) -> Optional[Member]:
        """Newest idle auto-scaled member first, then any idle non-lead."""
        total = len(members)

        def removable_lead(member: Member) -> bool:
            return not member.is_lead or total - 1 >= department.min_members

        preferred = [
            m for m in members
            if m.is_auto_scaled and not m.current_tasks and removable_lead(m)
        ]
        if preferred:
            return min(preferred, key=lambda m: (m.is_lead, -m.joined_at.timestamp()))

        idle = [m for m in members if not m.is_lead and not m.current_tasks]
        if idle:
            return max(idle, key=lambda m: m.joined_at)
        return None

    # ── Status ──────────────────────────────────────────────────────────

    def get_scaling_status(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            last_scaled = dict(self._last_scaled)
        return {
            "enabled": self.config.enabled,
            "running": self.is_running,
            "scale_up_threshold": self.config.scale_up_threshold,
            "scale_down_threshold": self.config.scale_down_threshold,
            "max_members_per_department": self.config.max_members_per_department,
            "cooldown_period": self.config.cooldown_period,
            "departments": {
                department_id: {
                    "seconds_since_scale": now - at,
                    "cooldown_remaining": max(0.0, self.config.cooldown_period - (now - at)),
                }
                for department_id, at in last_scaled.items()
            },
        }
