from pathlib import Path

import pytest
from dotenv import dotenv_values

from fedblog.core.config_store import ConfigStore
from fedblog.core.errors import PersistenceFailure
from fedblog.core.storage import retry_with_backoff, write_if_changed

PEM = "-----BEGIN PUBLIC KEY-----\nMIIBIjAN\nQIDAQAB\n-----END PUBLIC KEY-----\n"


def test_set_writes_escaped_value_and_reloads(tmp_path: Path):
    store = ConfigStore(tmp_path / ".env")

    assert store.set("ACTIVITYPUB_PUBLIC_KEY", PEM, comment="ActivityPub Keys") is True

    text = (tmp_path / ".env").read_text()
    assert "# ActivityPub Keys" in text
    assert "\\n" in text
    assert store.get("ACTIVITYPUB_PUBLIC_KEY") == PEM
    assert dotenv_values(tmp_path / ".env")["ACTIVITYPUB_PUBLIC_KEY"] == PEM


def test_set_keeps_other_keys_and_replaces_in_place(tmp_path: Path):
    path = tmp_path / ".env"
    path.write_text('# existing\nSITE_NAME="My Site"\nACTIVITYPUB_PUBLIC_KEY="old"\nOTHER=1\n')
    store = ConfigStore(path)

    store.set("ACTIVITYPUB_PUBLIC_KEY", "new")

    values = dotenv_values(path)
    assert values == {"SITE_NAME": "My Site", "ACTIVITYPUB_PUBLIC_KEY": "new", "OTHER": "1"}
    assert path.read_text().count("ACTIVITYPUB_PUBLIC_KEY=") == 1


def test_identical_value_is_not_rewritten(tmp_path: Path):
    path = tmp_path / ".env"
    store = ConfigStore(path)
    store.set("KEY", "value")
    before = path.stat().st_mtime_ns

    assert store.set("KEY", "value") is False
    assert path.stat().st_mtime_ns == before


def test_reload_notifies_changed_keys(tmp_path: Path):
    path = tmp_path / ".env"
    path.write_text("A=1\nB=2\n")
    store = ConfigStore(path)
    store.reload()

    changes = []
    store.on_change(lambda key, old, new: changes.append((key, old, new)))

    path.write_text("A=1\nB=3\nC=4\n")
    assert store.is_stale()
    assert store.refresh_if_stale() is True
    assert changes == [("B", "2", "3"), ("C", None, "4")]
    assert store.refresh_if_stale() is False


def test_failing_callback_does_not_stop_others(tmp_path: Path):
    path = tmp_path / ".env"
    store = ConfigStore(path)
    seen = []

    def broken(key, old, new):
        raise RuntimeError("boom")

    store.on_change(broken)
    store.on_change(lambda key, old, new: seen.append(key))
    store.set("KEY", "value")

    assert seen == ["KEY"]


def test_missing_file_reads_as_empty(tmp_path: Path):
    store = ConfigStore(tmp_path / "absent.env")
    assert store.reload() is False
    assert store.get("ANYTHING", "default") == "default"


def test_retry_with_backoff_raises_persistence_failure_after_three_attempts():
    delays = []
    calls = []

    def always_fails():
        calls.append(1)
        raise OSError("disk full")

    with pytest.raises(PersistenceFailure):
        retry_with_backoff(always_fails, "write state", sleep=delays.append)

    assert len(calls) == 3
    assert delays == [0.1, 0.2]


def test_retry_with_backoff_returns_first_success():
    attempts = iter([OSError("busy"), None])

    def flaky():
        error = next(attempts)
        if error:
            raise error
        return "ok"

    assert retry_with_backoff(flaky, "write", sleep=lambda _: None) == "ok"


def test_write_if_changed_sets_mode(tmp_path: Path):
    path = tmp_path / "secret.pem"
    assert write_if_changed(path, b"secret", mode=0o600) is True
    assert path.stat().st_mode & 0o777 == 0o600
    assert write_if_changed(path, b"secret", mode=0o600) is False
    assert not list(tmp_path.glob("secret.pem.tmp.*"))
