# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
Dell Storage Center backend: cookie login over HTTP, then correlated
rpc-call envelopes over one WebSocket channel (/messages) per run.
"""

import contextlib
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from arraypoll.connection.rpc_channel import CorrelationIdAllocator, PendingCall, RpcChannel, RpcRequest
from arraypoll.drivers.base import PAYLOAD_SHAPE_ERRORS, BackendDriver, Step, dig, to_int
from arraypoll.errors import ArrayPollError, AuthorizationError, BusinessError, ChannelClosedError, LoginError, PayloadError
from arraypoll.models.result import (
    COMPONENT_DISK,
    COMPONENT_ENCLOSURE,
    COMPONENT_PORT,
    ComponentHealth,
    PerformanceSample,
    PoolInfo,
)

LOG = logging.getLogger(__name__)

SESSION_COOKIE = "DellStorageManagerSession"
PLUGIN_ID = "sc"
AUTH_FAIL_MESSAGE = "身份验证失败"

# gatherStatsInformation objType -> canonical object type
STATS_OBJECT_TYPES = {
    "ScVolume": "volume",
    "ScDisk": "disk",
    "ScFibreChannelFaultDomain": "fc_fault_domain",
}


def _patch_locale(cookie_value: str) -> str:
    # Fill the empty locale slot of the session cookie
    return cookie_value.replace("%2C%2C", "%2Czh_CN%2C")


def _items(result: Any, key: str) -> List[Dict[str, Any]]:
    values = result.get(key) if isinstance(result, dict) else None
    return [value for value in values or [] if isinstance(value, dict)]


def _status(item: Dict[str, Any]) -> Dict[str, Optional[str]]:
    status = item.get("status") or {}
    if not isinstance(status, dict):
        return {"enum": str(status), "name": None}
    return {"enum": status.get("enum"), "name": status.get("enumName")}


class DellDriver(BackendDriver):
    vendor = "dell"

    def __init__(self, *args, channel_factory: Callable[..., RpcChannel] = RpcChannel, **kwargs):
        super().__init__(*args, **kwargs)
        self.channel_factory = channel_factory
        self.channel: Optional[RpcChannel] = None
        self.ids = CorrelationIdAllocator()
        self.serial_number: Optional[str] = None
        self.enclosure_indexes: List[str] = []

    def login(self) -> str:
        landing = self.transport.get(self.url("/"), authenticated=False, check=False)
        cookies = [f"{name}={_patch_locale(value)}" for name, value in landing.cookies if name == SESSION_COOKIE]
        if not cookies:
            raise LoginError(f"Dell landing page did not set {SESSION_COOKIE}")
        token = ";".join(cookies)

        form = {
            "username": self.credentials.username,
            "password": self.credentials.password,
            "rememberMe": "on",
            "authFailMsg": AUTH_FAIL_MESSAGE,
        }
        self.transport.post(self.url("/login"), data=form,
                            headers={"Content-Type": "application/x-www-form-urlencoded", "Cookie": token},
                            authenticated=False, check=False)
        return token

    def prepare(self) -> None:
        response = self.transport.get(self.url("/session/context"))
        try:
            context = json.loads(response.body)
            self.serial_number = str(context["pluginData"]["api"]["user"]["scSerialNumber"])
        except (TypeError, ValueError, KeyError) as e:
            raise PayloadError(f"Could not read the Storage Center serial number from session context: {e}") from e
        self.result.serial_number = self.serial_number
        LOG.debug(f"Storage Center serial number {self.serial_number}")

    @contextlib.contextmanager
    def collection_scope(self) -> Iterator[RpcChannel]:
        channel = self.channel_factory(call_timeout=self.config.call_timeout)
        try:
            try:
                channel.connect(f"{self.config.websocket_url}/messages",
                                {"Cookie": self.session_store.current_token() or ""})
            except AuthorizationError:
                self.session_store.invalidate()
                raise
            self.channel = channel
            yield channel
        finally:
            self.channel = None
            channel.close()

    def steps(self) -> List[Step]:
        return [
            ("basic_info", self.collect_basic_info),
            ("disks", self.collect_disks),
            ("ports", self.collect_ports),
            ("system_stats", self.collect_system_stats),
        ]

    def rpc(self, handler: str, method: str, *arguments: Any) -> PendingCall:
        correlation_id = self.ids.next_id()
        request = RpcRequest(
            plugin_id=PLUGIN_ID,
            correlation_id=correlation_id,
            method_name=method,
            method_arguments=list(arguments),
            handler_name=handler,
        )
        return self.channel.call(correlation_id, request)

    @staticmethod
    def reply_result(reply: Any, method: str) -> Any:
        """
        Unwrap one reply frame.

        Raises:
            The exception that ended the call, BusinessError for an error
            frame, or PayloadError when the frame carries no result.
        """
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, dict):
            raise PayloadError(f"{method} reply is not an object")
        error = reply.get("error") or reply.get("exception")
        if error or reply.get("type") == "rpc-error":
            if isinstance(error, dict):
                code = str(error.get("code") or error.get("type") or "rpc-error")
                message = str(error.get("message") or error.get("localizedMessage") or "")
            else:
                code, message = "rpc-error", str(error or "")
            raise BusinessError(code, f"{method}: {message}" if message else method)
        if "result" not in reply:
            raise PayloadError(f"{method} reply carried no result")
        return reply["result"]

    def collect_basic_info(self) -> None:
        calls = [
            self.rpc("StorageCenterSummaryService", "getCapacityData", self.serial_number),
            self.rpc("StorageTypeService", "listStorageTypes", self.serial_number),
            self.rpc("StorageCenterService", "getHardwareOverview", self.serial_number),
        ]
        handlers = [self.apply_capacity, self.apply_storage_types, self.apply_hardware_overview]
        for pending, reply, handler in zip(calls, self.channel.gather(calls), handlers):
            try:
                handler(self.reply_result(reply, pending.method_name))
            except ChannelClosedError:
                raise
            except ArrayPollError as e:
                LOG.error(f"{pending.method_name} (correlationId={pending.correlation_id}) failed: {e}")
                self.result.record_failure(f"basic_info:{pending.method_name}", e)
            except PAYLOAD_SHAPE_ERRORS as e:
                LOG.error(f"{pending.method_name} (correlationId={pending.correlation_id}) "
                          f"returned an unexpected payload: {e!r}")
                self.result.record_failure(f"basic_info:{pending.method_name}",
                                           PayloadError(f"Unexpected {pending.method_name} payload: {e!r}"))

    def apply_capacity(self, result: Dict[str, Any]) -> None:
        if not isinstance(result, dict):
            raise PayloadError("getCapacityData result is not an object")
        capacity = self.result.capacity
        for series in _items(result, "chartData"):
            color = series.get("seriesColorId")
            if color == "UsedSpace":
                capacity.used_bytes = to_int(series.get("value"))
            elif color == "FreeSpace":
                capacity.free_bytes = to_int(series.get("value"))
        total = dig(result, "totalSpace", "bytes")
        capacity.total_bytes = None if total is None else to_int(total)

    def apply_storage_types(self, result: List[Dict[str, Any]]) -> None:
        if not isinstance(result, list):
            raise PayloadError("listStorageTypes result is not a list")
        for index, storage_type in enumerate(item for item in result if isinstance(item, dict)):
            used = free = None
            total = dig(storage_type, "allocatedSpace", "bytes")
            for series in _items(storage_type, "sizeChartData"):
                if series.get("seriesColorId") == "UsedSpace":
                    used = to_int(series.get("value"))
                elif series.get("seriesColorId") == "FreeSpace":
                    free = to_int(series.get("value"))
            self.result.add_pool(PoolInfo(
                id=str(storage_type.get("instanceId") or index),
                name=storage_type.get("name"),
                total_bytes=None if total is None else to_int(total),
                used_bytes=used,
                free_bytes=free,
            ))

    def apply_hardware_overview(self, result: Dict[str, Any]) -> None:
        self.enclosure_indexes = []
        for enclosure in _items(result, "enclosureList"):
            self.result.add_component(self.component(enclosure, COMPONENT_ENCLOSURE))
            if enclosure.get("index") is not None:
                self.enclosure_indexes.append(str(enclosure["index"]))

    def component(self, item: Dict[str, Any], component_type: str,
                  running_category: Optional[str] = None) -> ComponentHealth:
        status = _status(item)
        component = ComponentHealth(
            component_type=component_type,
            id=str(item.get("instanceId", "")),
            name=item.get("name"),
            health=self.translator.translate("STATUS_E", status["enum"]),
            raw_health=status["enum"],
            details={"status_name": status["name"]} if status["name"] else {},
        )
        if running_category:
            component.running_status = self.translator.translate(running_category, status["enum"])
        if item.get("index") is not None:
            component.details["index"] = str(item["index"])
        return component

    def collect_disks(self) -> None:
        """One getHardwareDisks call per enclosure listed by the hardware overview."""
        if not self.enclosure_indexes:
            LOG.info("No enclosures known, skipping disk collection")
            return
        calls = [self.rpc("DiskService", "getHardwareDisks", self.serial_number, index)
                 for index in self.enclosure_indexes]
        for pending, reply in zip(calls, self.channel.gather(calls)):
            try:
                for disk in _items(self.reply_result(reply, pending.method_name), "items"):
                    self.result.add_component(self.component(disk, COMPONENT_DISK))
            except ChannelClosedError:
                raise
            except ArrayPollError as e:
                LOG.error(f"getHardwareDisks (correlationId={pending.correlation_id}) failed: {e}")
                self.result.record_failure(f"disks:{pending.correlation_id}", e)
            except PAYLOAD_SHAPE_ERRORS as e:
                LOG.error(f"getHardwareDisks (correlationId={pending.correlation_id}) "
                          f"returned an unexpected payload: {e!r}")
                self.result.record_failure(f"disks:{pending.correlation_id}",
                                           PayloadError(f"Unexpected getHardwareDisks payload: {e!r}"))

    def collect_ports(self) -> None:
        pending = self.rpc("ControllerService", "getControllerPorts", self.serial_number)
        for port in _items(self.reply_result(pending.result(), pending.method_name), "items"):
            self.result.add_component(self.component(port, COMPONENT_PORT, running_category="PORT_STATUS_E"))

    def collect_system_stats(self) -> None:
        now = datetime.now(timezone.utc)
        stamp = now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
        pending = self.rpc("RealTimeDataService", "gatherStatsInformation", stamp, self.serial_number)
        for entry in _items(self.reply_result(pending.result(), pending.method_name), "data"):
            object_type = STATS_OBJECT_TYPES.get(entry.get("objType"))
            if object_type is None:
                continue
            values = entry.get("values") or {}
            if not isinstance(values, dict):
                LOG.warning(f"Skipping {entry.get('objType')} sample with non-object values: {values!r}")
                continue
            self.result.add_performance(PerformanceSample(
                object_type=object_type,
                object_id=str(entry.get("instanceId") or entry.get("objId") or ""),
                metrics={key: to_int(value) for key, value in values.items()},
            ))
