# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Huawei OceanStor backend: JSON over the DeviceManager REST interface.

Responses look like {"data": ..., "error": {"code": 0, "description": "..."}}.
An error code of -401 means the session expired; any other non-zero code is a
business error reported with the vendor's description.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from arraypoll.connection.transport import TransportResponse
from arraypoll.drivers.base import BackendDriver, Step, dig, to_int
from arraypoll.errors import ArrayPollError, AuthorizationError, BusinessError, LoginError, PayloadError
from arraypoll.models.result import (
    COMPONENT_FAN,
    COMPONENT_FC_PORT,
    COMPONENT_POWER_SUPPLY,
    ComponentHealth,
    PerformanceSample,
    PoolInfo,
)

LOG = logging.getLogger(__name__)

AUTH_FAILED_CODE = "-401"
# Placeholder accepted in place of the device id before it is known
PLACEHOLDER_DEVICE = "xxxxx"
DEFAULT_SECTOR_SIZE = 512

# Storage pool USAGETYPE values
USAGE_LUN = "1"
USAGE_FILESYSTEM = "2"

# Objects sampled for current performance, in collection order
PERFORMANCE_OBJECTS = ("fc_port", "disk", "diskpool", "lun")

# CMO_STATISTIC_DATA_ID -> metric name
STATISTIC_IDS = {
    "22": "total_iops",
    "25": "read_iops",
    "28": "write_iops",
    "307": "max_iops",
    "23": "read_bandwidth",
    "26": "write_bandwidth",
}
BASE_STATISTIC_IDS = ("22", "25", "28", "307", "23", "26")
MAX_IOPS_ID = "307"


def parse_json(body: bytes) -> Dict[str, Any]:
    try:
        document = json.loads(body)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"Invalid JSON response: {e}") from e
    if not isinstance(document, dict):
        raise PayloadError("Unexpected JSON response: top level is not an object")
    return document


def error_of(document: Dict[str, Any]) -> Dict[str, Any]:
    """The error object of a response; an absent one means success."""
    error = document.get("error")
    if error is None:
        return {}
    if not isinstance(error, dict):
        raise PayloadError(f"Unexpected error field in response: {error!r}")
    return error


def data_items(document: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = document.get("data")
    if isinstance(data, list):
        return [item for item in data if isinstance(item, dict)]
    if isinstance(data, dict):
        return [data]
    return []


class HuaweiDriver(BackendDriver):
    vendor = "huawei"
    default_headers = {"Content-Type": "application/json"}

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.device_id: Optional[str] = None
        self.sector_size = DEFAULT_SECTOR_SIZE
        self._storage_pools: Optional[List[Dict[str, Any]]] = None

    def login(self) -> str:
        params = {
            "scope": 0,
            "username": self.credentials.username,
            "password": self.credentials.password,
            "isEncrypt": True,
            "loginMode": 3,
        }
        response = self.transport.post(self.rest_url("login", device=PLACEHOLDER_DEVICE), json=params,
                                       headers={"Content-Type": "application/json;charset=UTF-8"},
                                       authenticated=False, check=False)
        document = parse_json(response.body)
        error = error_of(document)
        error_code = str(error.get("code", 0))
        if error_code != "0":
            raise LoginError(f"Huawei login rejected, code {error_code}: "
                             f"{error.get('description', '')}")
        if not response.cookies:
            raise LoginError("Huawei login response did not set a session cookie")

        name, value = response.cookies[0]
        self.device_id = dig(document, "data", "deviceid") or None
        return f"{name}={value}"

    def check_response(self, response: TransportResponse) -> None:
        document = parse_json(response.body)
        error = error_of(document)
        code = str(error.get("code", 0))
        if code == "0":
            return
        description = error.get("description", "")
        if code == AUTH_FAILED_CODE:
            raise AuthorizationError(f"Huawei session expired: {description}", url=response.url, code=code)
        LOG.error(f"Request failed, url: {response.url}, code: {code}, message: {description}")
        raise BusinessError(code, description, url=response.url)

    def prepare(self) -> None:
        if self.device_id:
            return
        # Cached session: the device id was returned by a login in an earlier run
        document = self.rest_get("system/", device=PLACEHOLDER_DEVICE)
        items = data_items(document)
        self.device_id = items[0].get("ID") if items else None
        if not self.device_id:
            raise PayloadError("Could not resolve the Huawei device id from the system object")
        LOG.debug(f"Resolved device id {self.device_id}")

    def steps(self) -> List[Step]:
        return [
            ("server_status", self.collect_server_status),
            ("system", self.collect_system),
            ("storage_pools", self.collect_storage_pools),
            ("fans", self.collect_fans),
            ("power_supplies", self.collect_power_supplies),
            ("fc_ports", self.collect_fc_ports),
            ("performance", self.collect_performance),
        ]

    def rest_url(self, resource: str, device: Optional[str] = None) -> str:
        return self.url(f"/deviceManager/rest/{device or self.device_id}/{resource}")

    def rest_get(self, resource: str, device: Optional[str] = None, query: str = "") -> Dict[str, Any]:
        url = f"{self.rest_url(resource, device)}?{query + '&' if query else ''}t={self.timestamp_ms()}"
        return parse_json(self.transport.get(url).body)

    def health_fields(self, item: Dict[str, Any]) -> Dict[str, Any]:
        health = item.get("HEALTHSTATUS")
        running = item.get("RUNNINGSTATUS")
        return {
            "health": self.translator.translate("HEALTH_STATUS_E", health),
            "running_status": self.translator.translate("RUNNING_STATUS_E", running),
            "raw_health": None if health is None else str(health),
            "raw_status": None if running is None else str(running),
        }

    def collect_server_status(self) -> None:
        items = data_items(self.rest_get("server/status"))
        if items:
            status = items[0].get("status")
            self.result.system_status = self.translator.translate("SERVER_STATUS_E", status)
            description = items[0].get("description")
            if description:
                LOG.info(f"Server status: {description}")

    def collect_system(self) -> None:
        items = data_items(self.rest_get("system/"))
        if not items:
            raise PayloadError("Empty system response")
        system = items[0]
        self.result.system_name = system.get("NAME")
        self.result.serial_number = system.get("ID")
        self.result.model = self.translator.name_for("PRODUCT_MODE_E", system.get("PRODUCTMODE")) \
            or system.get("PRODUCTMODE")
        if system.get("PRODUCTVERSION"):
            self.result.firmware_versions.append(system["PRODUCTVERSION"])
        self.sector_size = to_int(system.get("SECTORSIZE"), DEFAULT_SECTOR_SIZE) or DEFAULT_SECTOR_SIZE

        usable_diskpool = sum(to_int(pool.get("FREECAPACITY")) for pool in data_items(self.rest_get("diskpool")))
        used = to_int(system.get("MEMBERDISKSCAPACITY")) - usable_diskpool
        unused = to_int(system.get("FREEDISKSCAPACITY")) + usable_diskpool

        lun = filesystem = protection = free = subscribed = 0
        for pool in self.storage_pools():
            consumed = to_int(pool.get("USERCONSUMEDCAPACITY"))
            usage_type = str(pool.get("USAGETYPE"))
            if usage_type == USAGE_LUN:
                lun += consumed
                subscribed += to_int(pool.get("LUNCONFIGEDCAPACITY"))
            elif usage_type == USAGE_FILESYSTEM:
                filesystem += consumed
                subscribed += to_int(pool.get("TOTALFSCAPACITY"))
            protection += to_int(pool.get("REPLICATIONCAPACITY"))
            free += to_int(pool.get("USERFREECAPACITY"))

        capacity = self.result.capacity
        sector = self.sector_size
        capacity.total_bytes = (used + unused) * sector
        capacity.used_bytes = used * sector
        capacity.free_bytes = unused * sector
        capacity.lun_bytes = lun * sector
        capacity.filesystem_bytes = filesystem * sector
        capacity.data_protection_bytes = protection * sector
        capacity.usable_bytes = (lun + filesystem + protection + free) * sector
        capacity.subscribed_bytes = subscribed * sector

    def storage_pools(self) -> List[Dict[str, Any]]:
        if self._storage_pools is None:
            self._storage_pools = data_items(self.rest_get("storagepool"))
        return self._storage_pools

    def collect_storage_pools(self) -> None:
        for pool in self.storage_pools():
            fields = self.health_fields(pool)
            total = to_int(pool.get("USERTOTALCAPACITY")) * self.sector_size
            free = to_int(pool.get("USERFREECAPACITY")) * self.sector_size
            self.result.add_pool(PoolInfo(
                id=str(pool.get("ID", "")),
                name=pool.get("NAME"),
                health=fields["health"],
                running_status=fields["running_status"],
                total_bytes=total,
                free_bytes=free,
                used_bytes=total - free,
            ))

    def _collect_components(self, resource: str, component_type: str, extra_fields=()) -> None:
        for item in data_items(self.rest_get(resource)):
            component = ComponentHealth(
                component_type=component_type,
                id=str(item.get("ID", "")),
                name=item.get("NAME"),
                details={field: item.get(field) for field in extra_fields if item.get(field) is not None},
                **self.health_fields(item),
            )
            self.result.add_component(component)

    def collect_fans(self) -> None:
        self._collect_components("fan", COMPONENT_FAN, extra_fields=("LOCATION",))

    def collect_power_supplies(self) -> None:
        self._collect_components("power", COMPONENT_POWER_SUPPLY, extra_fields=("LOCATION",))

    def collect_fc_ports(self) -> None:
        self._collect_components("fc_port", COMPONENT_FC_PORT, extra_fields=("LOCATION", "RUNSPEED", "WWN"))

    def collect_performance(self) -> None:
        """
        List each object type, then issue one statistics call per listed object.

        A failed statistics call is recorded and the next object is sampled;
        a failed list call fails the step.
        """
        for object_type in PERFORMANCE_OBJECTS:
            uuids = [f"{item.get('TYPE')}:{item.get('ID')}" for item in data_items(self.rest_get(object_type))]
            ids = [i for i in BASE_STATISTIC_IDS if not (object_type == "diskpool" and i == MAX_IOPS_ID)]
            for uuid in uuids:
                try:
                    self.result.add_performance(self.sample(object_type, uuid, ids))
                except AuthorizationError:
                    raise
                except ArrayPollError as e:
                    LOG.error(f"Statistics for {object_type} {uuid} failed: {e}")
                    self.result.record_failure(f"performance:{object_type}:{uuid}", e)

    def sample(self, object_type: str, uuid: str, statistic_ids) -> PerformanceSample:
        query = (f"CMO_STATISTIC_UUID={uuid}&CMO_STATISTIC_DATA_ID_LIST={','.join(statistic_ids)}"
                 f"&timeConversion=1")
        items = data_items(self.rest_get("performace_statistic/cur_statistic_data", query=query))
        metrics: Dict[str, Any] = {}
        if items:
            returned_ids = str(items[0].get("CMO_STATISTIC_DATA_ID_LIST") or ",".join(statistic_ids)).split(",")
            values = str(items[0].get("CMO_STATISTIC_DATA_LIST") or "").split(",")
            for data_id, value in zip(returned_ids, values):
                if value != "":
                    metrics[STATISTIC_IDS.get(data_id, data_id)] = to_int(value)
        return PerformanceSample(object_type=object_type,
                                 object_id=uuid, metrics=metrics)
