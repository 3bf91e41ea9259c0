# -----------------------------------------------------------------------------
# Copyright (c) 2025 ArrayPoll contributors
# Licensed under the MIT License. See LICENSE in project root for details.
# -----------------------------------------------------------------------------

"""
HP MSA backend: XML documents over the /v3/api HTTP interface.

Every response carries a status object:
    <OBJECT basetype="status"><PROPERTY name="return-code">0</PROPERTY>...
A return-code of -10027 means the session key expired.
"""

import hashlib
import logging
from typing import List, Optional

from lxml import etree

from arraypoll.connection.transport import TransportResponse
from arraypoll.drivers.base import BackendDriver, Step, to_int
from arraypoll.errors import ArrayPollError, AuthorizationError, BusinessError, LoginError, PayloadError
from arraypoll.models.result import (
    COMPONENT_COMPACT_FLASH,
    COMPONENT_CONTROLLER,
    COMPONENT_DISK,
    COMPONENT_EXPANDER_PORT,
    COMPONENT_FAN,
    COMPONENT_HOST_PORT,
    COMPONENT_NETWORK_PORT,
    COMPONENT_POWER_SUPPLY,
    ComponentHealth,
    PoolInfo,
)

LOG = logging.getLogger(__name__)

SECTOR_SIZE = 512
AUTH_FAILED_CODE = "-10027"

# usage-numeric values of disks
SPARE_USAGES = ("2", "3")
VIRTUAL_POOL_USAGE = "9"

# volume-type-numeric values counted as provisioned base volumes
BASE_VOLUME_TYPES = ("0", "2", "4", "8", "13", "15")

# Child objects of a controller and the component type they map to
CONTROLLER_CHILDREN = (
    ("network-parameters", COMPONENT_NETWORK_PORT),
    ("port", COMPONENT_HOST_PORT),
    ("expander-ports", COMPONENT_EXPANDER_PORT),
    ("compact-flash", COMPONENT_COMPACT_FLASH),
)


def parse_xml(body: bytes) -> etree._Element:
    try:
        return etree.fromstring(body, parser=etree.XMLParser(resolve_entities=False, no_network=True))
    except (etree.XMLSyntaxError, ValueError) as e:
        raise PayloadError(f"Invalid XML response: {e}") from e


def prop(element: etree._Element, name: str) -> Optional[str]:
    """Text of a direct <PROPERTY name="..."> child, or None."""
    found = element.find(f"PROPERTY[@name='{name}']")
    if found is None or found.text is None:
        return None
    return found.text.strip()


def objects(root: etree._Element, path: str) -> List[etree._Element]:
    return root.xpath(path)


class HPDriver(BackendDriver):
    vendor = "hp"
    default_headers = {"Content-Type": "application/x-www-form-urlencoded; charset=UTF-8"}

    def login(self) -> str:
        digest = hashlib.md5(f"{self.credentials.username}_{self.credentials.password}".encode()).hexdigest()
        response = self.transport.post(self.url("/v3/api/"), data=f"/api/login/{digest}",
                                       headers={"Content-Type": "application/x-www-form-urlencoded"},
                                       authenticated=False, check=False)
        root = parse_xml(response.body)
        session_key = None
        for status in objects(root, "/RESPONSE/OBJECT"):
            if prop(status, "response-type") == "Error":
                raise LoginError(f"HP login rejected: {prop(status, 'response')}")
            session_key = prop(status, "response")
            if session_key:
                break
        if not session_key:
            raise LoginError("HP login response did not contain a session key")

        token = f"wbisessionkey={session_key};wbiusername={self.credentials.username}"
        if self.config.locale:
            self._set_locale(token)
        return token

    def _set_locale(self, token: str) -> None:
        # Console text fields follow this locale; numeric fields are locale-independent
        try:
            self.transport.post(self.url("/v3/api/"), data=f"/api/set/cli-parameters/locale/{self.config.locale}",
                                headers={"Content-Type": "application/x-www-form-urlencoded", "Cookie": token},
                                authenticated=False)
            LOG.debug(f"Console locale set to {self.config.locale}")
        except ArrayPollError as e:
            LOG.error(f"Failed to set console locale to {self.config.locale}: {e}")

    def check_response(self, response: TransportResponse) -> None:
        root = parse_xml(response.body)
        status = objects(root, "/RESPONSE/OBJECT[@basetype='status']")
        if not status:
            return
        return_code = prop(status[0], "return-code")
        if return_code in (None, "0"):
            return
        message = prop(status[0], "response") or ""
        if return_code == AUTH_FAILED_CODE:
            raise AuthorizationError(f"HP session expired: {message}", url=response.url, code=return_code)
        LOG.error(f"Request failed, url: {response.url}, code: {return_code}, message: {message}")
        raise BusinessError(return_code, message, url=response.url)

    def steps(self) -> List[Step]:
        return [
            ("system", self.collect_system),
            ("versions", self.collect_versions),
            ("enclosures", self.collect_enclosures),
            ("disks", self.collect_disks),
            ("pools", self.collect_pools),
            ("volume_groups", self.collect_volume_groups),
        ]

    def show(self, command: str) -> etree._Element:
        response = self.transport.get(self.url(f"/v3/api/show/{command}?_={self.timestamp_ms()}"))
        return parse_xml(response.body)

    def health_of(self, element: etree._Element) -> str:
        numeric = prop(element, "health-numeric")
        if numeric is not None:
            return self.translator.translate("HEALTH_NUMERIC", numeric)
        return self.translator.translate("HEALTH", prop(element, "health"))

    def component(self, element: etree._Element, component_type: str, id_property: str = "durable-id") -> ComponentHealth:
        return ComponentHealth(
            component_type=component_type,
            id=prop(element, id_property) or "",
            name=prop(element, "name"),
            health=self.health_of(element),
            raw_health=prop(element, "health"),
            details={"reason": prop(element, "health-reason")} if prop(element, "health-reason") else {},
        )

    def collect_system(self) -> None:
        root = self.show("system")
        for system in objects(root, "/RESPONSE/OBJECT[@basetype='system']")[:1]:
            self.result.vendor_name = prop(system, "vendor-name")
            self.result.system_name = prop(system, "system-name")
            self.result.model = prop(system, "product-id")
            self.result.serial_number = prop(system, "midplane-serial-number")
            self.result.system_status = self.health_of(system)

    def collect_versions(self) -> None:
        root = self.show("version")
        for version in objects(root, "/RESPONSE/OBJECT[@basetype='versions']"):
            bundle = prop(version, "bundle-version")
            if bundle:
                self.result.firmware_versions.append(bundle)

    def collect_enclosures(self) -> None:
        root = self.show("enclosures")

        for controller in objects(root, "/RESPONSE/OBJECT/OBJECT[@basetype='controllers']"):
            self.result.add_component(self.component(controller, COMPONENT_CONTROLLER, id_property="controller-id"))
            for basetype, component_type in CONTROLLER_CHILDREN:
                for child in controller.findall(f"OBJECT[@basetype='{basetype}']"):
                    self.result.add_component(self.component(child, component_type))

        for power_supply in objects(root, "/RESPONSE/OBJECT/OBJECT[@basetype='power-supplies']"):
            self.result.add_component(self.component(power_supply, COMPONENT_POWER_SUPPLY))
            for fan in power_supply.findall("OBJECT[@basetype='fan']"):
                self.result.add_component(self.component(fan, COMPONENT_FAN))

    def collect_disks(self) -> None:
        root = self.show("disks")
        capacity = self.result.capacity
        total = spares = virtual = 0

        for drive in objects(root, "/RESPONSE/OBJECT[@basetype='drives']"):
            disk = self.component(drive, COMPONENT_DISK)
            disk.raw_status = prop(drive, "status")
            disk.running_status = self.translator.translate("DISK_STATUS", disk.raw_status)
            disk.details.update({
                "description": prop(drive, "description"),
                "size": prop(drive, "size"),
                "location": prop(drive, "location"),
            })
            self.result.add_component(disk)

            size_bytes = to_int(prop(drive, "size-numeric")) * SECTOR_SIZE
            usage = prop(drive, "usage-numeric")
            total += size_bytes
            if usage in SPARE_USAGES:
                spares += size_bytes
            elif usage == VIRTUAL_POOL_USAGE:
                virtual += size_bytes

        capacity.total_bytes = total
        capacity.spare_bytes = spares
        capacity.virtual_pool_bytes = virtual

    def collect_pools(self) -> None:
        root = self.show("pools")
        allocated = 0
        for pool in objects(root, "/RESPONSE/OBJECT[@basetype='pools']"):
            page_size = to_int(prop(pool, "page-size-numeric"))
            pages = to_int(prop(pool, "allocated-pages"))
            pool_allocated = page_size * pages * SECTOR_SIZE
            allocated += pool_allocated

            total = to_int(prop(pool, "total-size-numeric"), default=-1)
            free = to_int(prop(pool, "total-avail-numeric"), default=-1)
            self.result.add_pool(PoolInfo(
                id=prop(pool, "serial-number") or prop(pool, "name") or "",
                name=prop(pool, "name"),
                health=self.health_of(pool),
                total_bytes=total * SECTOR_SIZE if total >= 0 else None,
                free_bytes=free * SECTOR_SIZE if free >= 0 else None,
                used_bytes=pool_allocated,
            ))
        self.result.capacity.allocated_bytes = allocated

    def collect_volume_groups(self) -> None:
        root = self.show("volume-groups")
        volume_total = 0
        for volume in objects(root, "/RESPONSE/OBJECT/OBJECT[@basetype='volumes']"):
            if prop(volume, "volume-type-numeric") in BASE_VOLUME_TYPES:
                volume_total += to_int(prop(volume, "size-numeric")) * SECTOR_SIZE

        allocated = self.result.capacity.allocated_bytes or 0
        self.result.capacity.unallocated_bytes = volume_total - allocated
