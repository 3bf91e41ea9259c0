import json
import os

import pytest

from arraypoll import main as main_module
from arraypoll.errors import BusinessError, LoginError
from arraypoll.models.result import CanonicalResult


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.upper().startswith("ARRAYPOLL_"):
            monkeypatch.delenv(key)


def fake_driver(outcome):
    class FakeDriver:
        vendor = "hp"

        def __init__(self, config):
            self.config = config

        def run(self):
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

    return FakeDriver


def args(tmp_path, *extra):
    return ["--vendor", "hp", "--host", "https://msa.example", "-u", "manage", "-p", "secret",
            "--sessionDir", str(tmp_path / "cookie"), "--output", str(tmp_path / "result.json"), *extra]


def test_successful_run_exits_zero_and_writes_result(tmp_path, monkeypatch):
    seen = {}

    def driver_for(vendor):
        driver_class = fake_driver(CanonicalResult(vendor="hp", host="https://msa.example"))

        class Recording(driver_class):
            def __init__(self, config):
                super().__init__(config)
                seen["config"] = config

        return Recording

    monkeypatch.setattr(main_module, "driver_for", driver_for)

    assert main_module.main(args(tmp_path)) == 0
    assert json.loads((tmp_path / "result.json").read_text())["vendor"] == "hp"
    assert seen["config"].session_file == os.path.join(str(tmp_path / "cookie"), "hp.cookie")


def test_partial_run_exits_two(tmp_path, monkeypatch):
    result = CanonicalResult(vendor="hp", host="https://msa.example")
    result.record_failure("pools", BusinessError("-1"))
    monkeypatch.setattr(main_module, "driver_for", lambda vendor: fake_driver(result))

    assert main_module.main(args(tmp_path)) == 2


def test_login_failure_exits_one(tmp_path, monkeypatch):
    monkeypatch.setattr(main_module, "driver_for", lambda vendor: fake_driver(LoginError("bad password")))

    assert main_module.main(args(tmp_path)) == 1
    assert not (tmp_path / "result.json").exists()


def test_missing_credentials_exit_one(tmp_path):
    assert main_module.main(["--vendor", "ibm", "--host", "https://v7000.example",
                             "--sessionDir", str(tmp_path)]) == 1


def test_unwritable_logfile_falls_back_to_console(tmp_path, monkeypatch):
    monkeypatch.setattr(main_module, "driver_for",
                        lambda vendor: fake_driver(CanonicalResult(vendor="hp", host="https://msa.example")))

    logfile = str(tmp_path / "missing-dir" / "arraypoll.log")
    assert main_module.main(args(tmp_path, "--logfile", logfile)) == 0
    assert not os.path.exists(logfile)


def test_missing_enum_table_override_exits_one(tmp_path):
    config = tmp_path / "arraypoll.yaml"
    config.write_text(f"vendors:\n  hp:\n    enum_table: {tmp_path / 'missing.yaml'}\n")

    assert main_module.main(args(tmp_path, "--config", str(config))) == 1
    assert not (tmp_path / "result.json").exists()


def test_invalid_environment_value_exits_one(tmp_path, monkeypatch):
    monkeypatch.setenv("ARRAYPOLL_REQUEST_TIMEOUT", "abc")

    assert main_module.main(args(tmp_path)) == 1
