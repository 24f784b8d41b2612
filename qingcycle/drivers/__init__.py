"""
Resource drivers, one per resource kind.
"""

from typing import Dict, Type

from .base import ResourceDriver
from .cache import CacheAttributes, CacheDriver
from .instance import InstanceAttributes, InstanceDriver

DRIVERS: Dict[str, Type[ResourceDriver]] = {
    InstanceDriver.kind: InstanceDriver,
    CacheDriver.kind: CacheDriver,
}


def get_driver(kind: str, poll_interval: float = 5.0) -> ResourceDriver:
    """Instantiate the driver registered for ``kind``."""
    try:
        driver_class = DRIVERS[kind]
    except KeyError:
        raise ValueError(
            f"Unknown resource kind '{kind}', expected one of {sorted(DRIVERS)}"
        ) from None
    return driver_class(poll_interval=poll_interval)


__all__ = [
    "DRIVERS",
    "CacheAttributes",
    "CacheDriver",
    "InstanceAttributes",
    "InstanceDriver",
    "ResourceDriver",
    "get_driver",
]
