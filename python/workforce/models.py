"""Domain model for departments, members, tasks, teams and workflows.

Entities are plain dataclasses owned by ``DepartmentManager``; callers only
ever see deep-copied snapshots of them.
"""

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_task_id() -> str:
    return f"task-{time.time_ns()}"


# ============================================================================
# Enums
# ============================================================================

class DepartmentType(str, Enum):
    PRODUCT_MANAGER = "productManager"
    DEVELOPMENT = "development"
    DEVOPS = "devops"
    SECURITY = "security"
    QA = "qa"


class MemberRole(str, Enum):
    BA = "ba"
    PM = "pm"
    PO = "po"
    LEAD_TECHNICAL = "lead_technical"
    LEAD_BA = "lead_ba"
    LEAD_DEV = "lead_dev"
    LEAD_TEST = "lead_test"
    DEVELOPER = "developer"
    DEVOPS = "devops"
    QA = "qa"
    SECURITY = "security"

    @property
    def is_lead(self) -> bool:
        return self in LEAD_ROLES


LEAD_ROLES = frozenset({
    MemberRole.LEAD_TECHNICAL,
    MemberRole.LEAD_BA,
    MemberRole.LEAD_DEV,
    MemberRole.LEAD_TEST,
})


class MemberStatus(str, Enum):
    ONLINE = "online"
    BUSY = "busy"
    OFFLINE = "offline"
    UNHEALTHY = "unhealthy"


class TaskStatus(str, Enum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Dispatch order, lower goes first."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    Priority.CRITICAL: 0,
    Priority.HIGH: 1,
    Priority.MEDIUM: 2,
    Priority.LOW: 3,
}


# ============================================================================
# Serialization
# ============================================================================

def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class SerializableMixin:
    def to_dict(self) -> Dict[str, Any]:
        return _plain(asdict(self))


# ============================================================================
# Entities
# ============================================================================

@dataclass
class Department(SerializableMixin):
    id: str
    name: str
    type: DepartmentType
    description: str = ""
    capabilities: List[str] = field(default_factory=list)
    min_members: int = 0
    max_members: int = 10
    auto_scale: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class Member(SerializableMixin):
    id: str
    name: str
    role: MemberRole
    department_id: str
    department_type: Optional[DepartmentType] = None
    status: MemberStatus = MemberStatus.ONLINE
    specializations: List[str] = field(default_factory=list)
    current_tasks: List[str] = field(default_factory=list)
    max_concurrent: int = 3
    last_seen: datetime = field(default_factory=utcnow)
    joined_at: datetime = field(default_factory=utcnow)
    endpoint: str = ""
    auth_method: str = ""
    health_score: float = 1.0
    performance: Dict[str, float] = field(default_factory=dict)
    capabilities: Dict[str, bool] = field(default_factory=dict)
    is_lead: bool = False
    reports_to: str = ""
    team_members: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def load(self) -> int:
        return len(self.current_tasks)

    @property
    def has_capacity(self) -> bool:
        return len(self.current_tasks) < self.max_concurrent

    @property
    def is_auto_scaled(self) -> bool:
        return self.metadata.get("auto_scaled") == "true"


@dataclass
class TaskAttachment(SerializableMixin):
    id: str
    name: str
    type: str = ""
    size: int = 0
    url: str = ""
    content: str = ""
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Task(SerializableMixin):
    id: str = ""
    title: str = ""
    description: str = ""
    type: str = ""
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.QUEUED
    department_id: str = ""
    assigned_member: str = ""
    assigned_role: Optional[MemberRole] = None
    requested_by: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    estimated_hours: float = 0.0
    actual_hours: float = 0.0
    tags: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)
    attachments: List[TaskAttachment] = field(default_factory=list)
    results: Dict[str, Any] = field(default_factory=dict)
    required_skills: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}"


@dataclass
class DepartmentStats(SerializableMixin):
    department_id: str
    total_members: int = 0
    active_members: int = 0
    role_distribution: Dict[str, int] = field(default_factory=dict)
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_response: float = 0.0
    success_rate: float = 0.0
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class MemberStats(SerializableMixin):
    member_id: str
    member_role: MemberRole
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_time: float = 0.0
    success_rate: float = 0.0
    current_load: int = 0
    team_tasks: int = 0
    leadership_tasks: int = 0
    last_updated: datetime = field(default_factory=utcnow)


@dataclass
class Team(SerializableMixin):
    id: str
    name: str
    department_id: str
    lead_id: str = ""
    lead_role: Optional[MemberRole] = None
    member_ids: List[str] = field(default_factory=list)
    roles: List[MemberRole] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class WorkflowStep(SerializableMixin):
    id: str
    name: str
    description: str = ""
    assigned_role: Optional[MemberRole] = None
    required: bool = True
    dependencies: List[str] = field(default_factory=list)
    estimated_time: float = 0.0
    tools: List[str] = field(default_factory=list)


@dataclass
class Workflow(SerializableMixin):
    id: str
    name: str
    task_type: str
    steps: List[WorkflowStep] = field(default_factory=list)
    required_roles: List[MemberRole] = field(default_factory=list)
    optional_roles: List[MemberRole] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)
