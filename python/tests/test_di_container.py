"""Tests for DI container (workforce/di_container.py) and logging setup (workforce/enhanced_logging.py)."""

import json
import logging
from types import SimpleNamespace

import pytest

from workforce.config import Settings


@pytest.fixture(autouse=True)
def _reset():
    from workforce import di_container
    di_container._container = None
    package_logger = logging.getLogger("workforce")
    level = package_logger.level
    yield
    di_container._container = None
    for handler in list(package_logger.handlers):
        if getattr(handler, "_workforce_handler", False):
            package_logger.removeHandler(handler)
    package_logger.setLevel(level)


def quiet_settings(**overrides):
    overrides.setdefault("health_check_enabled", False)
    overrides.setdefault("auto_scaling_enabled", False)
    return Settings(**overrides)


# --- DI Container ---

def test_container_singleton():
    from workforce.di_container import get_container
    assert get_container() is get_container()


def test_container_status_all_uninitialized():
    from workforce.di_container import WorkforceContainer
    container = WorkforceContainer(quiet_settings())
    assert container.status() == {"settings": True, "manager": False, "coordinator": False, "started": False}


def test_container_lazy_init():
    from workforce.coordinator import DepartmentCoordinator
    from workforce.di_container import WorkforceContainer
    from workforce.manager import DepartmentManager

    container = WorkforceContainer(quiet_settings(unhealthy_threshold=5))
    coordinator = container.coordinator

    assert isinstance(coordinator, DepartmentCoordinator)
    assert isinstance(container.manager, DepartmentManager)
    assert coordinator.manager is container.manager
    assert container.manager.config.health_check.unhealthy_threshold == 5
    assert container.status()["manager"] is True


def test_init_container_keeps_first_settings():
    from workforce.di_container import init_container
    first = init_container(quiet_settings(app_name="first"))
    second = init_container(quiet_settings(app_name="second"))
    assert first is second
    assert second.settings.app_name == "first"


def test_shutdown_clears_container():
    from workforce.di_container import get_container, shutdown_container
    c1 = get_container()
    shutdown_container()
    assert get_container() is not c1


async def test_startup_and_shutdown():
    from workforce.di_container import WorkforceContainer
    container = WorkforceContainer(quiet_settings(log_level="warning"))

    await container.startup()
    assert container.manager.is_running
    assert container.status()["started"] is True
    assert logging.getLogger("workforce").level == logging.WARNING

    await container.startup()

    await container.shutdown()
    assert not container.manager.is_running
    assert container.status()["started"] is False


# --- Logging ---

def test_configure_logging_replaces_its_handler():
    from workforce.enhanced_logging import configure_logging
    configure_logging("DEBUG")
    logger = configure_logging("INFO", "json")

    tagged = [h for h in logger.handlers if getattr(h, "_workforce_handler", False)]
    assert len(tagged) == 1
    assert logger.level == logging.INFO


def test_json_formatter():
    from workforce.enhanced_logging import JsonFormatter
    record = logging.LogRecord("workforce.router", logging.INFO, __file__, 1, "assigned %s", ("t1",), None)
    entry = json.loads(JsonFormatter().format(record))
    assert entry["level"] == "INFO"
    assert entry["logger"] == "workforce.router"
    assert entry["message"] == "assigned t1"


async def test_track_performance_logs_duration(caplog):
    from workforce.enhanced_logging import track_performance

    @track_performance(operation="demo.op")
    async def work(x):
        return x * 2

    caplog.set_level(logging.DEBUG, logger=__name__)
    assert await work(21) == 42

    record = next(r for r in caplog.records if getattr(r, "operation", None) == "demo.op")
    assert record.levelno == logging.DEBUG
    assert record.getMessage().startswith("Timed operation: operation=demo.op duration_ms=")
    assert record.duration_ms >= 0


def test_track_performance_warns_when_slow(caplog, monkeypatch):
    from workforce import enhanced_logging

    ticks = iter([0.0, 2.5])
    monkeypatch.setattr(enhanced_logging, "time", SimpleNamespace(perf_counter=lambda: next(ticks)))

    @enhanced_logging.track_performance(operation="demo.slow", slow_after=1.0)
    def work():
        return "done"

    caplog.set_level(logging.DEBUG, logger=__name__)
    assert work() == "done"

    [record] = [r for r in caplog.records if getattr(r, "operation", None) == "demo.slow"]
    assert record.levelno == logging.WARNING
    assert record.duration_ms == 2500.0
    assert "limit_ms=1000.0" in record.getMessage()


def test_json_formatter_includes_timing_fields():
    from workforce.enhanced_logging import JsonFormatter
    record = logging.LogRecord("workforce.scaler", logging.DEBUG, __file__, 1, "timed", (), None)
    record.operation = "scaler.check_and_scale"
    record.duration_ms = 12.5
    entry = json.loads(JsonFormatter().format(record))
    assert entry["operation"] == "scaler.check_and_scale"
    assert entry["duration_ms"] == 12.5
