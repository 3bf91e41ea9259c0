"""
Canonical data model for normalized storage-array results.
"""

from arraypoll.models.result import (
    CanonicalResult,
    CapacitySummary,
    ComponentHealth,
    Credentials,
    PerformanceSample,
    PoolInfo,
    StepFailure,
    UNKNOWN,
)

__all__ = [
    'CanonicalResult',
    'CapacitySummary',
    'ComponentHealth',
    'Credentials',
    'PerformanceSample',
    'PoolInfo',
    'StepFailure',
    'UNKNOWN',
]
