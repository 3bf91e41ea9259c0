# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Canonical, vendor-independent result schema populated by every backend driver.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Canonical health labels shared by all vendor enum tables
HEALTH_NORMAL = "normal"
HEALTH_DEGRADED = "degraded"
HEALTH_FAULT = "fault"
HEALTH_PRE_FAIL = "pre_fail"
HEALTH_NOT_PRESENT = "not_present"
UNKNOWN = "unknown"

# Component types used in ComponentHealth.component_type
COMPONENT_CONTROLLER = "controller"
COMPONENT_NETWORK_PORT = "network_port"
COMPONENT_HOST_PORT = "host_port"
COMPONENT_EXPANDER_PORT = "expander_port"
COMPONENT_COMPACT_FLASH = "compact_flash"
COMPONENT_POWER_SUPPLY = "power_supply"
COMPONENT_FAN = "fan"
COMPONENT_DISK = "disk"
COMPONENT_ENCLOSURE = "enclosure"
COMPONENT_FC_PORT = "fc_port"
COMPONENT_PORT = "port"
COMPONENT_VOLUME = "volume"
COMPONENT_HOST = "host"
COMPONENT_NODE = "node"


class Credentials(BaseModel):
    """Username/password pair, loaded once at startup."""
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)


class CapacitySummary(BaseModel):
    """Array-wide capacity figures in bytes. Vendors fill what they expose."""
    total_bytes: Optional[int] = None
    used_bytes: Optional[int] = None
    free_bytes: Optional[int] = None
    spare_bytes: Optional[int] = None
    virtual_pool_bytes: Optional[int] = None
    allocated_bytes: Optional[int] = None
    unallocated_bytes: Optional[int] = None
    subscribed_bytes: Optional[int] = None
    lun_bytes: Optional[int] = None
    filesystem_bytes: Optional[int] = None
    data_protection_bytes: Optional[int] = None
    usable_bytes: Optional[int] = None


class ComponentHealth(BaseModel):
    component_type: str
    id: str
    name: Optional[str] = None
    health: str = UNKNOWN
    running_status: Optional[str] = None
    raw_health: Optional[str] = None
    raw_status: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class PoolInfo(BaseModel):
    id: str
    name: Optional[str] = None
    health: str = UNKNOWN
    running_status: Optional[str] = None
    total_bytes: Optional[int] = None
    used_bytes: Optional[int] = None
    free_bytes: Optional[int] = None


class PerformanceSample(BaseModel):
    """One counter sample set for one object (volume, disk, port, pool...)."""
    object_type: str
    object_id: str
    metrics: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class StepFailure(BaseModel):
    step: str
    error_type: str
    message: str


class CanonicalResult(BaseModel):
    """
    Accumulated per-array record.

    Owned and mutated by exactly one backend driver for the duration of a run.
    """
    vendor: str
    host: str
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    system_name: Optional[str] = None
    vendor_name: Optional[str] = None
    model: Optional[str] = None
    serial_number: Optional[str] = None
    firmware_versions: List[str] = Field(default_factory=list)
    system_status: Optional[str] = None

    capacity: CapacitySummary = Field(default_factory=CapacitySummary)
    components: List[ComponentHealth] = Field(default_factory=list)
    pools: List[PoolInfo] = Field(default_factory=list)
    performance: List[PerformanceSample] = Field(default_factory=list)
    failures: List[StepFailure] = Field(default_factory=list)

    def add_component(self, component: ComponentHealth) -> None:
        self.components.append(component)

    def add_pool(self, pool: PoolInfo) -> None:
        self.pools.append(pool)

    def add_performance(self, sample: PerformanceSample) -> None:
        self.performance.append(sample)

    def record_failure(self, step: str, error: Exception) -> None:
        self.failures.append(StepFailure(step=step, error_type=type(error).__name__, message=str(error)))

    def components_of(self, component_type: str) -> List[ComponentHealth]:
        return [c for c in self.components if c.component_type == component_type]

    @property
    def succeeded(self) -> bool:
        return not self.failures
