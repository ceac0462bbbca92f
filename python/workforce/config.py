"""
Configuration models using Pydantic and Pydantic Settings.

``DepartmentConfig`` is the surface the manager consumes. ``Settings`` layers
environment variables (prefix ``WORKFORCE_``) and an optional ``.env`` file on
top of it for the knobs operators usually tune.
"""

import logging
from enum import Enum
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from workforce.models import Department, DepartmentType, MemberRole


class RoutingStrategy(str, Enum):
    ROUND_ROBIN = "round-robin"
    LOAD_BASED = "load-based"
    SKILL_BASED = "skill-based"
    ROLE_BASED = "role-based"


# ============================================================================
# Health checking
# ============================================================================

class RoleHealthCheck(BaseModel):
    """Extra thresholds applied to the metrics a member reports."""
    response_time: Optional[float] = Field(default=None, gt=0, description="Ceiling in seconds")
    task_success: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Success rate floor")
    uptime: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Uptime floor")


class HealthCheckConfig(BaseModel):
    enabled: bool = True
    check_interval: float = Field(default=30.0, gt=0, description="Seconds between probe rounds")
    timeout: float = Field(default=5.0, gt=0, description="Per-probe timeout in seconds")
    unhealthy_threshold: int = Field(default=3, ge=1, description="Consecutive failures before latching unhealthy")
    retry_count: int = Field(default=1, ge=0, description="Transport retries per probe")
    retry_backoff: float = Field(default=0.5, ge=0, description="Exponential backoff multiplier for retries")
    role_specific_checks: Dict[MemberRole, RoleHealthCheck] = Field(default_factory=dict)
    reassign_on_unhealthy: bool = Field(
        default=False, description="Re-route tasks not yet started when a member latches unhealthy"
    )


# ============================================================================
# Auto-scaling
# ============================================================================

class AutoScalingConfig(BaseModel):
    enabled: bool = True
    check_interval: float = Field(default=60.0, gt=0)
    scale_up_threshold: float = Field(default=0.8, ge=0)
    scale_down_threshold: float = Field(default=0.2, ge=0)
    max_members_per_department: int = Field(default=10, ge=1)
    cooldown_period: float = Field(default=300.0, ge=0, description="Seconds between actions per department")
    role_scaling: Dict[MemberRole, int] = Field(default_factory=dict, description="Desired head-count per role")
    enforce_min_members: bool = Field(default=True, description="Scale up departments below min_members")
    member_endpoint_template: str = "http://localhost:8080/members/{department_id}"

    @model_validator(mode="after")
    def check_thresholds(self) -> "AutoScalingConfig":
        if self.scale_down_threshold >= self.scale_up_threshold:
            raise ValueError("scale_down_threshold must be lower than scale_up_threshold")
        return self


# ============================================================================
# Routing
# ============================================================================

class TaskRoutingConfig(BaseModel):
    strategy: RoutingStrategy = RoutingStrategy.LOAD_BASED
    department_rules: Dict[str, List[str]] = Field(
        default_factory=dict, description="Department id -> keywords, checked in order"
    )
    role_rules: Dict[MemberRole, List[str]] = Field(
        default_factory=dict, description="Role -> keywords that must all appear in the task text"
    )
    default_department: str = ""
    fallback_enabled: bool = True


# ============================================================================
# Departments and roles
# ============================================================================

class RoleDefinition(BaseModel):
    role: MemberRole
    name: str = ""
    description: str = ""
    required_skills: List[str] = Field(default_factory=list)
    max_concurrent: int = Field(default=3, ge=1)
    department_types: List[DepartmentType] = Field(default_factory=list)


class DepartmentDefinition(BaseModel):
    id: str = Field(min_length=1)
    name: str
    type: DepartmentType
    description: str = ""
    capabilities: List[str] = Field(default_factory=list)
    min_members: int = Field(default=0, ge=0)
    max_members: int = Field(default=10, ge=1)
    auto_scale: bool = False
    metadata: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_bounds(self) -> "DepartmentDefinition":
        if self.min_members > self.max_members:
            raise ValueError(
                f"department {self.id}: min_members ({self.min_members}) exceeds max_members ({self.max_members})"
            )
        return self

    def to_department(self) -> Department:
        return Department(
            id=self.id,
            name=self.name,
            type=self.type,
            description=self.description,
            capabilities=list(self.capabilities),
            min_members=self.min_members,
            max_members=self.max_members,
            auto_scale=self.auto_scale,
            metadata=dict(self.metadata),
        )


def default_departments() -> List[DepartmentDefinition]:
    """Departments installed when none are configured."""
    return [
        DepartmentDefinition(
            id="dept-dev",
            name="Development Services",
            type=DepartmentType.DEVELOPMENT,
            description="Software development and coding tasks",
            capabilities=["coding", "code-review", "architecture", "debugging"],
            min_members=2,
            max_members=10,
            auto_scale=True,
        ),
        DepartmentDefinition(
            id="dept-devops",
            name="Infrastructure & Operations",
            type=DepartmentType.DEVOPS,
            description="DevOps, deployment, and infrastructure management",
            capabilities=["ci-cd", "deployment", "monitoring", "infrastructure"],
            min_members=1,
            max_members=6,
            auto_scale=True,
        ),
        DepartmentDefinition(
            id="dept-security",
            name="Security & Compliance",
            type=DepartmentType.SECURITY,
            description="Security analysis, compliance, and vulnerability management",
            capabilities=["security-scan", "compliance", "audit", "penetration-testing"],
            min_members=1,
            max_members=4,
            auto_scale=True,
        ),
        DepartmentDefinition(
            id="dept-qa",
            name="Quality Assurance",
            type=DepartmentType.QA,
            description="Testing, quality assurance, and test automation",
            capabilities=["testing", "automation", "performance-testing", "integration-testing"],
            min_members=2,
            max_members=8,
            auto_scale=True,
        ),
    ]


class DepartmentConfig(BaseModel):
    enabled: bool = True
    departments: List[DepartmentDefinition] = Field(default_factory=list)
    auto_scaling: AutoScalingConfig = Field(default_factory=AutoScalingConfig)
    health_check: HealthCheckConfig = Field(default_factory=HealthCheckConfig)
    task_routing: TaskRoutingConfig = Field(default_factory=TaskRoutingConfig)
    roles: Dict[MemberRole, RoleDefinition] = Field(default_factory=dict)
    stats_interval: float = Field(default=30.0, gt=0, description="Seconds between stats/dispatch passes")
    event_buffer_size: int = Field(default=64, ge=1, description="Per-subscriber event queue size")

    @field_validator("departments")
    @classmethod
    def validate_unique_ids(cls, v: List[DepartmentDefinition]) -> List[DepartmentDefinition]:
        seen = set()
        for definition in v:
            if definition.id in seen:
                raise ValueError(f"duplicate department id: {definition.id}")
            seen.add(definition.id)
        return v


# ============================================================================
# Environment settings
# ============================================================================

class Settings(BaseSettings):
    """Process settings with validation and environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="WORKFORCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="workforce", description="Application name")
    environment: str = Field(default="development", description="Environment: development, staging, production")

    # API
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8000, ge=1024, le=65535, description="API port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")

    # Registry
    stats_interval: float = Field(default=30.0, gt=0, description="Seconds between stats/dispatch passes")
    event_buffer_size: int = Field(default=64, ge=1, description="Per-subscriber event queue size")

    # Health checks
    health_check_enabled: bool = Field(default=True)
    health_check_interval: float = Field(default=30.0, gt=0)
    health_check_timeout: float = Field(default=5.0, gt=0)
    unhealthy_threshold: int = Field(default=3, ge=1)
    health_retry_count: int = Field(default=1, ge=0)

    # Auto-scaling
    auto_scaling_enabled: bool = Field(default=True)
    scaling_check_interval: float = Field(default=60.0, gt=0)
    scale_up_threshold: float = Field(default=0.8, ge=0)
    scale_down_threshold: float = Field(default=0.2, ge=0)
    max_members_per_department: int = Field(default=10, ge=1)
    scaling_cooldown: float = Field(default=300.0, ge=0)

    # Routing
    routing_strategy: RoutingStrategy = Field(default=RoutingStrategy.LOAD_BASED)
    default_department: str = Field(default="")
    fallback_enabled: bool = Field(default=True)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment is one of allowed values."""
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"Log level must be one of {allowed}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format is valid."""
        allowed = ["json", "text"]
        if v not in allowed:
            raise ValueError(f"Log format must be one of {allowed}")
        return v

    def get_log_level(self) -> int:
        """Get logging level as integer."""
        return getattr(logging, self.log_level)

    def to_department_config(self) -> DepartmentConfig:
        """Build the manager configuration; departments fall back to the defaults."""
        return DepartmentConfig(
            stats_interval=self.stats_interval,
            event_buffer_size=self.event_buffer_size,
            health_check=HealthCheckConfig(
                enabled=self.health_check_enabled,
                check_interval=self.health_check_interval,
                timeout=self.health_check_timeout,
                unhealthy_threshold=self.unhealthy_threshold,
                retry_count=self.health_retry_count,
            ),
            auto_scaling=AutoScalingConfig(
                enabled=self.auto_scaling_enabled,
                check_interval=self.scaling_check_interval,
                scale_up_threshold=self.scale_up_threshold,
                scale_down_threshold=self.scale_down_threshold,
                max_members_per_department=self.max_members_per_department,
                cooldown_period=self.scaling_cooldown,
            ),
            task_routing=TaskRoutingConfig(
                strategy=self.routing_strategy,
                default_department=self.default_department,
                fallback_enabled=self.fallback_enabled,
            ),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: Process settings
    """
    return Settings()
