from pathlib import Path

import pytest
from pydantic import ValidationError

from quotecache.config import SOURCES, AdmissionPolicy, get_source
from quotecache.config.settings import Settings, clear_settings_cache, get_settings
from quotecache.errors import InvalidArgument


def test_settings_defaults(monkeypatch):
    for name in ("QC_STORE_BACKEND", "QC_API_KEY", "QC_SQLITE_PATH"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings(_env_file=None)

    assert settings.store_backend == "memory"
    assert settings.lock_poll_interval_ms == 200
    assert settings.cache_refresh_interval == 86400
    assert settings.api_key is None


def test_settings_read_prefixed_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("QC_STORE_BACKEND", "sqlite")
    monkeypatch.setenv("QC_CACHE_HOME", str(tmp_path))
    monkeypatch.setenv("QC_SQLITE_PATH", "$QC_CACHE_HOME/kv.sqlite3")
    clear_settings_cache()

    settings = get_settings()

    assert settings.store_backend == "sqlite"
    assert settings.sqlite_path == Path(tmp_path) / "kv.sqlite3"
    assert get_settings() is settings


def test_settings_reject_unknown_backend():
    with pytest.raises(ValidationError):
        Settings(store_backend="etcd")


def test_settings_reject_unresolved_path_variables(monkeypatch):
    monkeypatch.delenv("QC_MISSING_DIR", raising=False)
    with pytest.raises(ValidationError):
        Settings(sqlite_path="$QC_MISSING_DIR/kv.sqlite3")


def test_builtin_sources():
    assert set(SOURCES) == {"ecb_usd", "ecb_gbp", "ecb_jpy", "ecb_chf", "yahoo_close"}
    ecb = get_source("ecb_usd")
    assert ecb.series == "USD"
    assert ecb.tz.key == "Europe/Berlin"
    assert ecb.admission_policy is AdmissionPolicy.NON_BLOCKING
    yahoo = get_source("yahoo_close")
    assert yahoo.instrumented
    assert yahoo.retention_seconds is None


def test_unknown_source_is_invalid_argument():
    with pytest.raises(InvalidArgument) as excinfo:
        get_source("ecb_xyz")
    assert "ecb_usd" in excinfo.value.context["known"]
