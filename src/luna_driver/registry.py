"""
Driver registry

Nothing is registered at import time. The host application creates a registry
(or uses the shared one) and registers the driver once during startup:

    >>> from luna_driver import Driver, get_driver_registry
    >>> get_driver_registry().register("luna", Driver())
    >>> conn = get_driver_registry().open("luna", "localhost:7688")
"""

import threading
from typing import Dict, List

import structlog

from .errors import InterfaceError

logger = structlog.get_logger()


class DriverRegistry:
    """Name -> driver mapping owned by the host application"""

    def __init__(self):
        self._drivers: Dict[str, object] = {}
        self._lock = threading.RLock()

    def register(self, name: str, driver):
        """
        Register a driver under a name.

        Raises:
            InterfaceError: If the name is empty or already taken
        """
        if not name:
            raise InterfaceError("driver name must not be empty")
        with self._lock:
            if name in self._drivers:
                raise InterfaceError(f"register called twice for driver {name}")
            self._drivers[name] = driver
        logger.info("driver registered", name=name)

    def get(self, name: str):
        with self._lock:
            driver = self._drivers.get(name)
        if driver is None:
            raise InterfaceError(f"unknown driver {name!r} (forgotten register?)")
        return driver

    def drivers(self) -> List[str]:
        with self._lock:
            return sorted(self._drivers)

    def open(self, name: str, dsn: str, **kwargs):
        return self.get(name).open(dsn, **kwargs)

    def unregister(self, name: str):
        with self._lock:
            self._drivers.pop(name, None)


_global_registry = None


def get_driver_registry() -> DriverRegistry:
    """Get the process-wide registry (empty until the host registers drivers)"""
    global _global_registry
    if _global_registry is None:
        _global_registry = DriverRegistry()
    return _global_registry


__all__ = ['DriverRegistry', 'get_driver_registry']
