# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
IBM Storwize V7000 backend: form login, then JSON-RPC envelopes posted to
/RPCAdapter and one form POST to /VDiskGridDataHandler for volumes.

The session is rejected with HTTP 401, which the transport client handles.
RPC failures are reported in the body through exceptionThrown.
"""

import json
import logging
import time
from typing import Any, Dict, List, Optional, Sequence

from arraypoll.connection.transport import TransportResponse
from arraypoll.drivers.base import BackendDriver, Step, to_int
from arraypoll.errors import BusinessError, LoginError, PayloadError
from arraypoll.models.result import (
    COMPONENT_DISK,
    COMPONENT_HOST,
    COMPONENT_NODE,
    COMPONENT_VOLUME,
    ComponentHealth,
    PerformanceSample,
    PoolInfo,
)

LOG = logging.getLogger(__name__)

AUTH_COOKIES = ("_auth", "JSESSIONID")
LOGIN_TZ_OFFSET = "-480"
GRID_TZ_OFFSET = "40"
RPC_CLAZZ = "com.ibm.evo.rpc.RPCRequest"
LOGIC_PACKAGE = "com.ibm.svc.gui.logic"

# CapacitySummary field -> candidate keys in getClusterSystemBytes
CAPACITY_FIELDS = {
    "total_bytes": ("physicalCapacity", "totalCapacity", "total_mdisk_capacity"),
    "used_bytes": ("usedCapacity", "total_used_capacity"),
    "free_bytes": ("freeCapacity", "total_free_space"),
    "allocated_bytes": ("allocatedCapacity", "total_vdisk_capacity"),
    "subscribed_bytes": ("virtualCapacity", "total_allocated_extent_capacity"),
}


def first_of(item: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if item.get(key) is not None:
            return item[key]
    return None


def as_list(result: Any) -> List[Dict[str, Any]]:
    """RPC results arrive either as a bare list or wrapped in items/data."""
    if isinstance(result, dict):
        result = first_of(result, ("items", "data", "rows"))
    if not isinstance(result, list):
        return []
    return [item for item in result if isinstance(item, dict)]


class IBMDriver(BackendDriver):
    vendor = "ibm"

    def login(self) -> str:
        login_url = self.url("/login")
        page = self.transport.get(login_url, authenticated=False, check=False)
        page_cookies = ";".join(f"{name}={value}" for name, value in page.cookies)

        if self.config.pre_login_delay > 0:
            LOG.debug(f"Waiting {self.config.pre_login_delay}s before posting the login form")
            time.sleep(self.config.pre_login_delay)

        form = {
            "login": self.credentials.username,
            "password": self.credentials.password,
            "tzoffset": LOGIN_TZ_OFFSET,
        }
        response = self.transport.post(login_url, data=form,
                                       headers={"Content-Type": "application/x-www-form-urlencoded",
                                                "Cookie": page_cookies},
                                       authenticated=False, check=False)
        auth = [f"{name}={value}" for name, value in response.cookies if name in AUTH_COOKIES]
        if not auth:
            raise LoginError("IBM login response did not set _auth/JSESSIONID cookies")
        return ";".join(auth)

    def check_response(self, response: TransportResponse) -> None:
        if not response.url.endswith("/RPCAdapter"):
            return
        document = self.parse(response)
        if isinstance(document, dict) and document.get("exceptionThrown"):
            code = str(document.get("exceptionClass") or document.get("exceptionCode") or "exceptionThrown")
            message = str(document.get("exceptionMessage") or document.get("message") or "")
            LOG.error(f"RPC failed, url: {response.url}, code: {code}, message: {message}")
            raise BusinessError(code, message, url=response.url)

    @staticmethod
    def parse(response: TransportResponse) -> Any:
        try:
            return json.loads(response.body)
        except (TypeError, ValueError) as e:
            raise PayloadError(f"Invalid JSON response from {response.url}: {e}") from e

    def steps(self) -> List[Step]:
        return [
            ("system_bytes", self.collect_system_bytes),
            ("pools", self.collect_pools),
            ("cluster_stats", self.collect_cluster_stats),
            ("node_stats", self.collect_node_stats),
            ("hosts", self.collect_hosts),
            ("internal_drives", self.collect_internal_drives),
            ("volumes", self.collect_volumes),
        ]

    def rpc(self, logic_class: str, method: str, arguments: Optional[List[Any]] = None) -> Any:
        params = {
            "clazz": RPC_CLAZZ,
            "methodArgs": arguments or [],
            "methodClazz": f"{LOGIC_PACKAGE}.{logic_class}",
            "methodName": method,
        }
        LOG.debug(f"[RPC] {logic_class}.{method}")
        response = self.transport.post(self.url("/RPCAdapter"), data=json.dumps(params),
                                       headers={"Content-Type": "application/json-rpc"})
        document = self.parse(response)
        if isinstance(document, dict) and "result" in document:
            return document["result"]
        return document

    def status_fields(self, item: Dict[str, Any]) -> Dict[str, Any]:
        raw = first_of(item, ("status", "health"))
        raw = None if raw is None else str(raw)
        return {"health": self.translator.translate("STATUS", raw), "raw_health": raw}

    def collect_system_bytes(self) -> None:
        result = self.rpc("ClusterRPC", "getClusterSystemBytes")
        if not isinstance(result, dict):
            raise PayloadError("getClusterSystemBytes result is not an object")
        capacity = self.result.capacity
        for field, keys in CAPACITY_FIELDS.items():
            value = first_of(result, keys)
            if value is not None:
                setattr(capacity, field, to_int(value))
        if result.get("name"):
            self.result.system_name = result["name"]

    def collect_pools(self) -> None:
        for pool in as_list(self.rpc("PoolsRPC", "getPools")):
            fields = self.status_fields(pool)
            total = first_of(pool, ("capacity", "capacityBytes"))
            free = first_of(pool, ("freeCapacity", "free_capacity"))
            used = first_of(pool, ("usedCapacity", "used_capacity"))
            if used is None and total is not None and free is not None:
                used = to_int(total) - to_int(free)
            self.result.add_pool(PoolInfo(
                id=str(pool.get("id", "")),
                name=pool.get("name"),
                health=fields["health"],
                total_bytes=None if total is None else to_int(total),
                free_bytes=None if free is None else to_int(free),
                used_bytes=None if used is None else to_int(used),
            ))

    @staticmethod
    def stat_metrics(result: Any) -> Dict[str, Any]:
        """Flatten a list of {statName, statCurrent} records into a metrics dict."""
        metrics: Dict[str, Any] = {}
        for stat in as_list(result):
            name = first_of(stat, ("statName", "stat_name"))
            if name is not None:
                metrics[str(name)] = to_int(first_of(stat, ("statCurrent", "stat_current")))
        if not metrics and isinstance(result, dict):
            metrics = {key: value for key, value in result.items() if isinstance(value, (int, float))}
        return metrics

    def collect_cluster_stats(self) -> None:
        metrics = self.stat_metrics(self.rpc("ClusterRPC", "getClusterStats"))
        self.result.add_performance(PerformanceSample(object_type="system", object_id=self.config.host,
                                                      metrics=metrics))

    def collect_node_stats(self) -> None:
        # TODO: enumerate node ids instead of sampling node 1 only
        metrics = self.stat_metrics(self.rpc("ClusterRPC", "getNodeStats", [1]))
        self.result.add_performance(PerformanceSample(object_type=COMPONENT_NODE, object_id="1", metrics=metrics))

    def collect_hosts(self) -> None:
        for host in as_list(self.rpc("HostsRPC", "getHosts")):
            self.result.add_component(ComponentHealth(
                component_type=COMPONENT_HOST,
                id=str(host.get("id", "")),
                name=host.get("name"),
                details={"port_count": host["portCount"]} if host.get("portCount") is not None else {},
                **self.status_fields(host),
            ))

    def collect_internal_drives(self) -> None:
        for drive in as_list(self.rpc("PhysicalRPC", "getInternalDriveInfo")):
            use = drive.get("use")
            disk = ComponentHealth(
                component_type=COMPONENT_DISK,
                id=str(drive.get("id", "")),
                name=drive.get("name"),
                running_status=self.translator.translate("DRIVE_USE", use) if use is not None else None,
                raw_status=None if use is None else str(use),
                **self.status_fields(drive),
            )
            for key in ("capacity", "techType", "enclosureId", "slotId"):
                if drive.get(key) is not None:
                    disk.details[key] = drive[key]
            self.result.add_component(disk)

    def collect_volumes(self) -> None:
        # TODO: page through the grid once volume counts exceed a single page
        form = {
            "panelKey": str(self.timestamp_ms()),
            "extendedMDiskInfo": "false",
            "password": "0",
            "tzoffset": GRID_TZ_OFFSET,
        }
        response = self.transport.post(self.url("/VDiskGridDataHandler"), data=form,
                                       headers={"Content-Type": "application/x-www-form-urlencoded"})
        for volume in as_list(self.parse(response)):
            fields = self.status_fields(volume)
            self.result.add_component(ComponentHealth(
                component_type=COMPONENT_VOLUME,
                id=str(volume.get("id", "")),
                name=volume.get("name"),
                details={key: volume[key] for key in ("capacity", "mdiskGrpName") if volume.get(key) is not None},
                **fields,
            ))
