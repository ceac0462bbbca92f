"""Task routing and auto-scaling engine for departments of workers."""

from workforce.config import DepartmentConfig, Settings, get_settings
from workforce.coordinator import DepartmentCoordinator, TaskResult
from workforce.manager import DepartmentManager
from workforce.models import (
    Department,
    DepartmentType,
    Member,
    MemberRole,
    MemberStatus,
    Priority,
    Task,
    TaskStatus,
)

__version__ = "0.1.0"

__all__ = [
    "Department",
    "DepartmentConfig",
    "DepartmentCoordinator",
    "DepartmentManager",
    "DepartmentType",
    "Member",
    "MemberRole",
    "MemberStatus",
    "Priority",
    "Settings",
    "Task",
    "TaskResult",
    "TaskStatus",
    "get_settings",
]
