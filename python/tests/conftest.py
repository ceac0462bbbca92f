"""Shared fixtures: managers with background loops disabled and member factories."""

import random

import pytest

from workforce.config import AutoScalingConfig, DepartmentConfig, HealthCheckConfig
from workforce.manager import DepartmentManager
from workforce.models import Member, MemberRole


def quiet_config(**overrides) -> DepartmentConfig:
    """Config whose health checker and auto-scaler do not start on their own."""
    overrides.setdefault("health_check", HealthCheckConfig(enabled=False, retry_count=0))
    overrides.setdefault("auto_scaling", AutoScalingConfig(enabled=False))
    return DepartmentConfig(**overrides)


@pytest.fixture
def make_config():
    return quiet_config


@pytest.fixture
def make_manager():
    def _make(config=None, **kwargs):
        kwargs.setdefault("rng", random.Random(7))
        return DepartmentManager(config or quiet_config(), **kwargs)
    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()


@pytest.fixture
def make_member():
    def _make(member_id, department_id="dept-dev", role=MemberRole.DEVELOPER, **kwargs):
        kwargs.setdefault("name", member_id)
        kwargs.setdefault("max_concurrent", 3)
        return Member(id=member_id, role=role, department_id=department_id, **kwargs)
    return _make
