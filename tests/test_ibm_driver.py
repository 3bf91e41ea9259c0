import json
from types import SimpleNamespace

import pytest

from arraypoll.drivers import ibm as ibm_module
from arraypoll.drivers.ibm import IBMDriver
from arraypoll.errors import LoginError
from tests.conftest import FakeResponse, FakeSession

TOKEN = "_auth=A1;JSESSIONID=J1"


class RpcAdapterSession(FakeSession):
    """Answers /RPCAdapter posts by methodName; everything else uses URL routes."""

    def __init__(self, replies):
        super().__init__()
        self.replies = replies

    def request(self, method, url, headers=None, data=None, json=None, timeout=None, verify=None):
        if url.endswith("/RPCAdapter"):
            self.calls.append(_call(method, url, headers, data))
            return self.replies[_method_name(data)]
        return super().request(method, url, headers=headers, data=data, json=json, timeout=timeout, verify=verify)


def _call(method, url, headers, data):
    return SimpleNamespace(method=method, url=url, headers=dict(headers or {}), data=data, json=None)


def _method_name(data):
    return json.loads(data)["methodName"]


def rpc(result):
    return FakeResponse(200, {"result": result})


def default_replies():
    return {
        "getClusterSystemBytes": rpc({"name": "v7000-lab", "physicalCapacity": 10000, "usedCapacity": 4000,
                                      "freeCapacity": 6000}),
        "getPools": rpc([{"id": 0, "name": "Pool0", "status": "online", "capacity": 5000, "freeCapacity": 2000}]),
        "getClusterStats": rpc([{"statName": "cpu_pc", "statCurrent": "12"},
                                {"statName": "vdisk_r_io", "statCurrent": "300"}]),
        "getNodeStats": rpc([{"statName": "cpu_pc", "statCurrent": "15"}]),
        "getHosts": rpc([{"id": 0, "name": "esx01", "status": "degraded", "portCount": 2}]),
        "getInternalDriveInfo": rpc([
            {"id": 0, "status": "online", "use": "member", "capacity": "1.1TB"},
            {"id": 1, "status": "offline", "use": "failed"},
        ]),
    }


@pytest.fixture
def session():
    session = RpcAdapterSession(default_replies())
    session.add("POST", "/VDiskGridDataHandler",
                FakeResponse(200, {"items": [{"id": "0", "name": "vol0", "status": "online", "capacity": "100.00GB"}]}))
    redirect = FakeResponse(302, cookies=[("_auth", "A1"), ("JSESSIONID", "J1")])
    session.add("POST", "/login", FakeResponse(200, b"<html/>", history=[redirect]))
    session.add("GET", "/login", FakeResponse(200, b"<html/>", cookies=[("JSESSIONID", "pre"), ("_sync", "s1")]))
    return session


@pytest.fixture
def build(make_config, session):
    def _build(session_token=None, **overrides):
        driver = IBMDriver(make_config("ibm", **overrides))
        driver.transport.session = session
        if session_token:
            driver.session_store.save(session_token)
        return driver
    return _build


def test_full_run_logs_in_and_normalizes(build, session, monkeypatch):
    sleeps = []
    monkeypatch.setattr(ibm_module.time, "sleep", sleeps.append)
    driver = build(pre_login_delay=1.0)

    result = driver.run()

    get_login, post_login = session.calls[0], session.calls[1]
    assert get_login.method == "GET" and post_login.method == "POST"
    assert post_login.headers["Cookie"] == "JSESSIONID=pre;_sync=s1"
    assert post_login.data == {"login": "admin", "password": "secret", "tzoffset": "-480"}
    assert sleeps == [1.0]
    assert driver.session_store.load() == (TOKEN, True)

    rpc_calls = session.calls_to("/RPCAdapter")
    assert [_method_name(c.data) for c in rpc_calls] == [
        "getClusterSystemBytes", "getPools", "getClusterStats", "getNodeStats", "getHosts", "getInternalDriveInfo"]
    assert all(c.headers["Content-Type"] == "application/json-rpc" and c.headers["Cookie"] == TOKEN
               for c in rpc_calls)
    envelope = json.loads(rpc_calls[3].data)
    assert envelope == {"clazz": "com.ibm.evo.rpc.RPCRequest", "methodArgs": [1],
                        "methodClazz": "com.ibm.svc.gui.logic.ClusterRPC", "methodName": "getNodeStats"}

    assert result.succeeded, result.failures
    assert result.system_name == "v7000-lab"
    assert (result.capacity.total_bytes, result.capacity.used_bytes, result.capacity.free_bytes) == (10000, 4000, 6000)
    assert [(p.name, p.health, p.used_bytes) for p in result.pools] == [("Pool0", "normal", 3000)]
    assert result.performance[0].metrics == {"cpu_pc": 12, "vdisk_r_io": 300}
    assert (result.performance[1].object_type, result.performance[1].metrics) == ("node", {"cpu_pc": 15})

    assert [(h.name, h.health) for h in result.components_of("host")] == [("esx01", "degraded")]
    drives = result.components_of("disk")
    assert [(d.health, d.running_status) for d in drives] == [("normal", "online"), ("fault", "offline")]
    volume = result.components_of("volume")[0]
    assert (volume.name, volume.health) == ("vol0", "normal")

    grid = session.calls_to("/VDiskGridDataHandler")[0]
    assert grid.data["tzoffset"] == "40"
    assert grid.data["extendedMDiskInfo"] == "false"


def test_rpc_exception_is_business_error(build, session):
    session.replies["getHosts"] = FakeResponse(200, {"exceptionThrown": True,
                                                     "exceptionMessage": "CMMVC5753E The object does not exist."})
    driver = build(session_token=TOKEN)

    result = driver.run()

    assert [f.step for f in result.failures] == ["hosts"]
    assert result.failures[0].error_type == "BusinessError"
    assert driver.session_store.load() == (TOKEN, True)
    assert result.components_of("volume")


def test_http_401_invalidates_and_stops(build, session):
    session.replies["getPools"] = FakeResponse(401)
    driver = build(session_token=TOKEN)

    result = driver.run()

    assert [f.step for f in result.failures] == ["pools"]
    assert driver.session_store.load() == (None, False)
    assert session.calls_to("/VDiskGridDataHandler") == []


def test_login_without_auth_cookies_fails(build, session):
    session.routes = []
    session.add("GET", "/login", FakeResponse(200, b"<html/>"))
    session.add("POST", "/login", FakeResponse(200, b"<html>bad password</html>"))
    driver = build()

    with pytest.raises(LoginError):
        driver.run()
