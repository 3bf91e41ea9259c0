import hashlib

import pytest

from arraypoll.drivers.hp import HPDriver
from arraypoll.errors import AuthorizationError, BusinessError, LoginError
from tests.conftest import FakeResponse


def status(code="0", response="Command completed successfully.", response_type="Success"):
    return (f'<OBJECT basetype="status" name="status" oid="99">'
            f'<PROPERTY name="response-type">{response_type}</PROPERTY>'
            f'<PROPERTY name="response">{response}</PROPERTY>'
            f'<PROPERTY name="return-code">{code}</PROPERTY></OBJECT>')


def props(**values):
    return "".join(f'<PROPERTY name="{name.replace("_", "-")}">{value}</PROPERTY>' for name, value in values.items())


def xml(*objects, code="0"):
    body = '<?xml version="1.0" encoding="UTF-8"?><RESPONSE VERSION="L100">' + "".join(objects) + status(code) + "</RESPONSE>"
    return FakeResponse(200, body)


LOGIN_OK = FakeResponse(200, '<RESPONSE VERSION="L100">' + status("1", "a1b2c3d4", "Success") + "</RESPONSE>")

SYSTEM = xml(f'<OBJECT basetype="system" name="system-information" oid="1">'
             f'{props(system_name="msa-lab", vendor_name="HPE", product_id="MSA 2040 SAN", midplane_serial_number="00C0FF1", health="OK", health_numeric="0")}'
             f'</OBJECT>')

VERSIONS = xml(f'<OBJECT basetype="versions" name="controller-a-versions" oid="1">{props(bundle_version="GL225R003")}</OBJECT>')

ENCLOSURES = xml(
    '<OBJECT basetype="enclosures" name="enclosure" oid="1">'
    f'<OBJECT basetype="controllers" name="controller" oid="2">{props(controller_id="A", durable_id="controller_a", health="OK", health_numeric="0")}'
    f'<OBJECT basetype="network-parameters" name="mgmt" oid="3">{props(durable_id="mgmtport_a", health="OK", health_numeric="0")}</OBJECT>'
    f'<OBJECT basetype="port" name="ports" oid="4">{props(durable_id="hostport_A1", health="Degraded", health_numeric="1", health_reason="SFP missing")}</OBJECT>'
    f'<OBJECT basetype="expander-ports" name="expander" oid="5">{props(durable_id="sas_port_a", health="N/A", health_numeric="4")}</OBJECT>'
    f'<OBJECT basetype="compact-flash" name="cf" oid="6">{props(durable_id="cf_a", health="OK")}</OBJECT>'
    '</OBJECT>'
    f'<OBJECT basetype="power-supplies" name="power-supplies" oid="7">{props(durable_id="psu_1.1", health="Fault", health_numeric="2")}'
    f'<OBJECT basetype="fan" name="fan-details" oid="8">{props(durable_id="fan_1.1", health="OK", health_numeric="0")}</OBJECT>'
    '</OBJECT>'
    '</OBJECT>'
)

DISKS = xml(
    f'<OBJECT basetype="drives" name="drive" oid="1">{props(durable_id="disk_01.01", location="1.1", size_numeric="1000", usage_numeric="1", status="Up", health="OK", health_numeric="0")}</OBJECT>',
    f'<OBJECT basetype="drives" name="drive" oid="2">{props(durable_id="disk_01.02", location="1.2", size_numeric="2000", usage_numeric="2", status="Up", health="OK", health_numeric="0")}</OBJECT>',
    f'<OBJECT basetype="drives" name="drive" oid="3">{props(durable_id="disk_01.03", location="1.3", size_numeric="3000", usage_numeric="9", status="Warning", health="Degraded", health_numeric="1")}</OBJECT>',
)

POOLS = xml(f'<OBJECT basetype="pools" name="pools" oid="1">'
            f'{props(name="A", serial_number="00c0ff-pool-a", page_size_numeric="8192", allocated_pages="10", total_size_numeric="4000", total_avail_numeric="1000", health="OK", health_numeric="0")}'
            f'</OBJECT>')

VOLUME_GROUPS = xml(
    '<OBJECT basetype="volume-groups" name="volume-groups" oid="1">'
    f'<OBJECT basetype="volumes" name="volume" oid="2">{props(volume_type_numeric="0", size_numeric="100000")}</OBJECT>'
    f'<OBJECT basetype="volumes" name="volume" oid="3">{props(volume_type_numeric="1", size_numeric="5")}</OBJECT>'
    '</OBJECT>'
)


def route_all(session, **overrides):
    responses = {
        "system": SYSTEM,
        "version": VERSIONS,
        "enclosures": ENCLOSURES,
        "disks": DISKS,
        "pools": POOLS,
        "volume-groups": VOLUME_GROUPS,
    }
    responses.update(overrides)
    for command, response in responses.items():
        session.add("GET", f"/v3/api/show/{command}?", response)
    session.add("POST", "/v3/api/", LOGIN_OK)


def test_full_run_logs_in_and_normalizes(make_driver, fake_session):
    route_all(fake_session)
    driver = make_driver(HPDriver)

    result = driver.run()

    login = fake_session.calls_to("/v3/api/")[0]
    assert login.method == "POST"
    assert login.data == "/api/login/" + hashlib.md5(b"admin_secret").hexdigest()
    assert driver.session_store.load() == ("wbisessionkey=a1b2c3d4;wbiusername=admin", True)
    assert fake_session.calls_to("/show/system")[0].headers["Cookie"] == "wbisessionkey=a1b2c3d4;wbiusername=admin"

    assert result.succeeded, result.failures
    assert result.system_name == "msa-lab"
    assert result.vendor_name == "HPE"
    assert result.model == "MSA 2040 SAN"
    assert result.system_status == "normal"
    assert result.firmware_versions == ["GL225R003"]

    health = {c.id: c.health for c in result.components}
    assert health["A"] == "normal"
    assert health["hostport_A1"] == "degraded"
    assert health["sas_port_a"] == "not_present"
    assert health["cf_a"] == "normal"
    assert health["psu_1.1"] == "fault"
    assert health["fan_1.1"] == "normal"
    assert result.components_of("host_port")[0].details == {"reason": "SFP missing"}

    disks = result.components_of("disk")
    assert [d.running_status for d in disks] == ["online", "online", "degraded"]

    capacity = result.capacity
    assert capacity.total_bytes == 6000 * 512
    assert capacity.spare_bytes == 2000 * 512
    assert capacity.virtual_pool_bytes == 3000 * 512
    assert capacity.allocated_bytes == 8192 * 10 * 512
    assert capacity.unallocated_bytes == 100000 * 512 - 8192 * 10 * 512

    pool = result.pools[0]
    assert pool.id == "00c0ff-pool-a"
    assert pool.total_bytes == 4000 * 512
    assert pool.free_bytes == 1000 * 512


def test_cached_session_skips_login(make_driver, fake_session):
    route_all(fake_session)
    driver = make_driver(HPDriver, session_token="wbisessionkey=cached;wbiusername=admin")

    driver.run()

    assert [c for c in fake_session.calls if c.method == "POST"] == []
    assert all(c.headers["Cookie"] == "wbisessionkey=cached;wbiusername=admin"
               for c in fake_session.calls_to("/show/"))


def test_expired_session_invalidates_and_stops(make_driver, fake_session):
    route_all(fake_session, system=xml(code="-10027"))
    driver = make_driver(HPDriver, session_token="wbisessionkey=stale;wbiusername=admin")

    result = driver.run()

    assert [f.step for f in result.failures] == ["system"]
    assert result.failures[0].error_type == AuthorizationError.__name__
    assert driver.session_store.load() == (None, False)
    assert fake_session.calls_to("/show/version") == []


def test_business_error_is_recorded_and_collection_continues(make_driver, fake_session):
    route_all(fake_session, version=xml(code="-1"))
    driver = make_driver(HPDriver, session_token="wbisessionkey=ok;wbiusername=admin")

    result = driver.run()

    assert [f.step for f in result.failures] == ["versions"]
    assert result.failures[0].error_type == BusinessError.__name__
    assert result.system_name == "msa-lab"
    assert result.capacity.total_bytes == 6000 * 512
    assert driver.session_store.load()[1] is True


def test_rejected_login_aborts_run(make_driver, fake_session):
    fake_session.add("POST", "/v3/api/", FakeResponse(
        200, '<RESPONSE>' + status("2", "Invalid user name or password", "Error") + '</RESPONSE>'))
    driver = make_driver(HPDriver)

    with pytest.raises(LoginError):
        driver.run()
    assert driver.session_store.load() == (None, False)


def test_malformed_xml_fails_only_that_step(make_driver, fake_session):
    route_all(fake_session, pools=FakeResponse(200, "<RESPONSE><OBJECT"))
    driver = make_driver(HPDriver, session_token="wbisessionkey=ok;wbiusername=admin")

    result = driver.run()

    assert [f.step for f in result.failures] == ["pools"]
    assert result.failures[0].error_type == "PayloadError"
