import pytest

from arraypoll.errors import SessionStoreError
from arraypoll.session.store import SessionStore


def test_load_missing_file_reports_not_found(tmp_path):
    store = SessionStore(str(tmp_path / "hp.cookie"))
    assert store.load() == (None, False)
    assert store.current_token() is None


def test_empty_file_is_treated_as_absent(tmp_path):
    path = tmp_path / "hp.cookie"
    path.write_text("")
    assert SessionStore(str(path)).load() == (None, False)


def test_save_creates_directory_and_load_returns_token(tmp_path):
    path = tmp_path / "cookie" / "huawei.cookie"
    store = SessionStore(str(path))
    store.save("session=abc")

    assert path.read_text() == "session=abc"
    assert SessionStore(str(path)).load() == ("session=abc", True)
    assert store.current_token() == "session=abc"


def test_save_rejects_empty_token(tmp_path):
    with pytest.raises(SessionStoreError):
        SessionStore(str(tmp_path / "x.cookie")).save("")


def test_invalidate_removes_file_and_tolerates_missing(tmp_path):
    path = tmp_path / "dell.cookie"
    store = SessionStore(str(path))
    store.save("DellStorageManagerSession=1")

    store.invalidate()
    assert not path.exists()
    assert store.current_token() is None

    # second invalidate is a no-op
    store.invalidate()
    assert store.load() == (None, False)


def test_get_or_create_logs_in_only_when_needed(tmp_path):
    store = SessionStore(str(tmp_path / "ibm.cookie"))
    logins = []

    def login():
        logins.append(1)
        return "_auth=1;JSESSIONID=2"

    assert store.get_or_create(login) == "_auth=1;JSESSIONID=2"
    assert store.get_or_create(login) == "_auth=1;JSESSIONID=2"
    assert len(logins) == 1

    store.invalidate()
    store.get_or_create(login)
    assert len(logins) == 2


def test_get_or_create_does_not_save_when_login_fails(tmp_path):
    path = tmp_path / "hp.cookie"
    store = SessionStore(str(path))

    def login():
        raise RuntimeError("console unreachable")

    with pytest.raises(RuntimeError):
        store.get_or_create(login)
    assert not path.exists()


def test_token_survives_a_new_store_instance(tmp_path):
    path = str(tmp_path / "cookie" / "hp.cookie")
    SessionStore(path).save("SID=abc123")

    logins = []
    token = SessionStore(path).get_or_create(lambda: logins.append(1) or "SID=other")

    assert token == "SID=abc123"
    assert logins == []
