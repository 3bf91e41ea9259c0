"""
Vendor backend drivers, keyed by the vendor name used on the command line.
"""

from typing import Dict, Type

from arraypoll.drivers.base import BackendDriver
from arraypoll.drivers.dell import DellDriver
from arraypoll.drivers.hp import HPDriver
from arraypoll.drivers.huawei import HuaweiDriver
from arraypoll.drivers.ibm import IBMDriver
from arraypoll.errors import ConfigError

DRIVERS: Dict[str, Type[BackendDriver]] = {
    "hp": HPDriver,
    "huawei": HuaweiDriver,
    "dell": DellDriver,
    "ibm": IBMDriver,
}


def driver_for(vendor: str) -> Type[BackendDriver]:
    try:
        return DRIVERS[vendor]
    except KeyError:
        raise ConfigError(f"No driver for vendor '{vendor}'") from None


__all__ = ["BackendDriver", "DellDriver", "HPDriver", "HuaweiDriver", "IBMDriver", "DRIVERS", "driver_for"]
