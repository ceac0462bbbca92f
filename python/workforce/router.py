"""Task routing: department resolution, candidate filtering and selection.

The router holds no registry state of its own. ``DepartmentManager`` hands it
a ``RegistryView`` over the live maps while holding the registry lock, and the
router mutates the task and the chosen member in place.
"""

import logging
import random
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from workforce.config import RoutingStrategy, TaskRoutingConfig
from workforce.exceptions import NoCapacityError, UnroutableError
from workforce.models import (
    Department,
    Member,
    MemberStats,
    MemberStatus,
    Priority,
    Task,
    TaskStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

# Fixed task-type table consulted after the configured keyword rules.
TASK_TYPE_DEPARTMENTS: Dict[str, str] = {
    "development": "dept-dev",
    "coding": "dept-dev",
    "code-review": "dept-dev",
    "bug": "dept-dev",
    "bug_fix": "dept-dev",
    "feature": "dept-dev",
    "feature_development": "dept-dev",
    "deployment": "dept-devops",
    "ci-cd": "dept-devops",
    "infrastructure": "dept-devops",
    "monitoring": "dept-devops",
    "security": "dept-security",
    "compliance": "dept-security",
    "audit": "dept-security",
    "testing": "dept-qa",
    "qa": "dept-qa",
    "test": "dept-qa",
    "performance": "dept-qa",
}

SKILL_MATCH_WEIGHT = 10
SPARE_CAPACITY_WEIGHT = 2
SUCCESS_RATE_WEIGHT = 5

_ROUTABLE_STATUSES = (MemberStatus.ONLINE, MemberStatus.BUSY)


@dataclass
class RegistryView:
    """Live registry maps; only valid while the registry lock is held."""
    departments: Mapping[str, Department]
    members: Mapping[str, Member]
    member_stats: Mapping[str, MemberStats]


class TaskRouter:
    """Places tasks on members according to the configured strategy."""

    def __init__(self, config: TaskRoutingConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng or random.Random()
        self._strategies: Dict[RoutingStrategy, Callable[[Task, List[Member], RegistryView], Member]] = {
            RoutingStrategy.ROUND_ROBIN: self._select_round_robin,
            RoutingStrategy.LOAD_BASED: self._select_load_based,
            RoutingStrategy.SKILL_BASED: self._select_skill_based,
            RoutingStrategy.ROLE_BASED: self._select_role_based,
        }

    # ── Routing ─────────────────────────────────────────────────────────

    def route_task(self, task: Task, view: RegistryView) -> Member:
        """Resolve a department, pick a member and assign the task.

        Raises:
            UnroutableError: no department could be resolved.
            NoCapacityError: no candidate and fallback found nobody.
        """
        department_id = task.department_id or self.determine_department(task)
        if department_id not in view.departments:
            raise UnroutableError(
                f"task {task.id} resolved to unknown department {department_id}",
                details={"task_id": task.id, "department_id": department_id},
            )
        task.department_id = department_id

        candidates = self.find_suitable_members(task, view)
        if candidates:
            member = self.select_member(task, candidates, view)
        elif self.config.fallback_enabled:
            member = self.fallback_member(task, view)
            task.department_id = member.department_id
        else:
            raise NoCapacityError(
                f"no suitable members in {department_id} for task {task.id}",
                details={"task_id": task.id, "department_id": department_id},
            )

        self.assign_task(task, member, view)
        return member

    def determine_department(self, task: Task) -> str:
        text = task.text.lower()
        for department_id, keywords in self.config.department_rules.items():
            if any(keyword.lower() in text for keyword in keywords):
                return department_id

        department_id = TASK_TYPE_DEPARTMENTS.get(task.type.lower())
        if department_id:
            return department_id

        if self.config.default_department:
            return self.config.default_department

        raise UnroutableError(
            f"cannot determine department for task {task.id}",
            details={"task_id": task.id, "type": task.type},
        )

    def find_suitable_members(self, task: Task, view: RegistryView) -> List[Member]:
        """Online or busy members of the task's department with spare capacity, by id."""
        text = task.text.lower()
        candidates = []
        for member in sorted(view.members.values(), key=lambda m: m.id):
            if member.department_id != task.department_id:
                continue
            if member.status not in _ROUTABLE_STATUSES or not member.has_capacity:
                continue
            if task.assigned_role is not None and member.role != task.assigned_role:
                continue
            if task.required_skills and not self._has_required_skills(member, task.required_skills):
                continue
            if not self._matches_role_rules(member, text):
                continue
            candidates.append(member)
        return candidates

    def select_member(self, task: Task, candidates: List[Member], view: RegistryView) -> Member:
        return self._strategies[self.config.strategy](task, candidates, view)

    def fallback_member(self, task: Task, view: RegistryView) -> Member:
        available = [
            member
            for member in sorted(view.members.values(), key=lambda m: m.id)
            if member.status == MemberStatus.ONLINE and member.has_capacity
        ]
        if not available:
            raise NoCapacityError(
                f"no available members for task {task.id}",
                details={"task_id": task.id},
            )
        member = self._rng.choice(available)
        logger.info(
            "Fallback routing: task=%s member=%s department=%s",
            task.id, member.id, member.department_id,
        )
        return member

    # ── Assignment ──────────────────────────────────────────────────────

    def assign_task(self, task: Task, member: Member, view: RegistryView) -> None:
        task.assigned_member = member.id
        task.assigned_role = member.role
        task.status = TaskStatus.ASSIGNED
        task.updated_at = utcnow()

        member.current_tasks.append(task.id)
        if not member.has_capacity:
            member.status = MemberStatus.BUSY
        self._sync_load(member, view)

        logger.info(
            "Task assigned: task=%s member=%s role=%s department=%s",
            task.id, member.id, member.role.value, task.department_id,
        )

    def release_task(self, member: Member, task_id: str, view: RegistryView) -> bool:
        """Detach a task from its member; a busy member under capacity goes back online."""
        if task_id not in member.current_tasks:
            return False
        member.current_tasks.remove(task_id)
        if member.status == MemberStatus.BUSY and member.has_capacity:
            member.status = MemberStatus.ONLINE
        self._sync_load(member, view)
        return True

    def reassign_task(
        self, task: Task, view: RegistryView, reason: str = ""
    ) -> Tuple[Optional[Member], Member]:
        """Detach, requeue and route again. Returns (previous member, new member).

        If routing fails the task is left queued and the error propagates.
        """
        previous = view.members.get(task.assigned_member) if task.assigned_member else None
        if previous is not None:
            self.release_task(previous, task.id, view)

        task.assigned_member = ""
        task.assigned_role = None
        task.status = TaskStatus.QUEUED
        task.updated_at = utcnow()
        logger.info(
            "Reassigning task: task=%s previous=%s reason=%s",
            task.id, previous.id if previous else "", reason,
        )
        return previous, self.route_task(task, view)

    # ── Strategies ──────────────────────────────────────────────────────

    def _select_round_robin(self, task: Task, candidates: List[Member], view: RegistryView) -> Member:
        # Least-loaded rotation; no cursor survives between calls.
        return self._select_load_based(task, candidates, view)

    def _select_load_based(self, task: Task, candidates: List[Member], view: RegistryView) -> Member:
        return min(candidates, key=lambda m: (m.load, m.id))

    def _select_skill_based(self, task: Task, candidates: List[Member], view: RegistryView) -> Member:
        return min(candidates, key=lambda m: (-self.skill_score(task, m, view), m.id))

    def _select_role_based(self, task: Task, candidates: List[Member], view: RegistryView) -> Member:
        if "lead" in task.text.lower() or task.priority == Priority.CRITICAL:
            leads = [m for m in candidates if m.is_lead]
            if leads:
                return self._select_load_based(task, leads, view)
        return self._select_load_based(task, candidates, view)

    def skill_score(self, task: Task, member: Member, view: RegistryView) -> float:
        score = 0.0
        for skill in task.required_skills:
            if self._has_skill(member, skill):
                score += SKILL_MATCH_WEIGHT
        score += SPARE_CAPACITY_WEIGHT * (member.max_concurrent - member.load)
        stats = view.member_stats.get(member.id)
        if stats is not None:
            score += SUCCESS_RATE_WEIGHT * stats.success_rate
        return score

    # ── Helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def _has_skill(member: Member, skill: str) -> bool:
        skill = skill.lower()
        return any(skill == spec.lower() for spec in member.specializations)

    def _has_required_skills(self, member: Member, skills: List[str]) -> bool:
        return all(self._has_skill(member, skill) for skill in skills)

    def _matches_role_rules(self, member: Member, text: str) -> bool:
        keywords = self.config.role_rules.get(member.role)
        if not keywords:
            return True
        return all(keyword.lower() in text for keyword in keywords)

    @staticmethod
    def _sync_load(member: Member, view: RegistryView) -> None:
        stats = view.member_stats.get(member.id)
        if stats is not None:
            stats.current_load = member.load
