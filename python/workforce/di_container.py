"""Dependency injection container for the workforce engine.

Lightweight wiring of services at application startup.
Services are created lazily on first access.
"""

import logging
from typing import Any, Dict, Optional

from workforce.config import Settings, get_settings

logger = logging.getLogger(__name__)


class WorkforceContainer:
    """Central service container: settings -> manager -> coordinator."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings
        self._manager = None
        self._coordinator = None
        self._started = False

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = get_settings()
        return self._settings

    @property
    def manager(self):
        if self._manager is None:
            from workforce.manager import DepartmentManager
            self._manager = DepartmentManager(self.settings.to_department_config())
            logger.info("DepartmentManager initialized")
        return self._manager

    @property
    def coordinator(self):
        if self._coordinator is None:
            from workforce.coordinator import DepartmentCoordinator
            self._coordinator = DepartmentCoordinator(self.manager)
            logger.info("DepartmentCoordinator initialized")
        return self._coordinator

    async def startup(self) -> None:
        if self._started:
            return
        from workforce.enhanced_logging import configure_logging
        configure_logging(self.settings.log_level, self.settings.log_format)
        await self.manager.start()
        await self.coordinator.start()
        self._started = True

    async def shutdown(self) -> None:
        if not self._started:
            return
        await self.coordinator.stop()
        await self.manager.stop()
        self._started = False

    def status(self) -> Dict[str, Any]:
        """Report which services are initialized."""
        return {
            "settings": self._settings is not None,
            "manager": self._manager is not None,
            "coordinator": self._coordinator is not None,
            "started": self._started,
        }


# Global container
_container: Optional[WorkforceContainer] = None


def get_container() -> WorkforceContainer:
    global _container
    if _container is None:
        _container = WorkforceContainer()
    return _container


def init_container(settings: Optional[Settings] = None) -> WorkforceContainer:
    global _container
    if _container is None:
        _container = WorkforceContainer(settings)
    return _container


def shutdown_container() -> None:
    global _container
    _container = None
