from __future__ import annotations

import pytest

from mastercode_sync.config import Config, ImwebSettings

_IMWEB_ENV = {
    "IMWEB_BASE_URL": "https://api.imweb.test/",
    "IMWEB_CLIENT_ID": "key",
    "IMWEB_CLIENT_SECRET": "secret",
    "IMWEB_SHOP_ID": "shop",
    "IMWEB_TIMEOUT_SECONDS": "7.5",
}


@pytest.fixture
def clean_env(monkeypatch):
    for name in [*_IMWEB_ENV, "DATABASE_URL", "MASTERCODE_LOG_FORMAT", "MASTERCODE_LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_database_url_is_required(clean_env):
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        Config.from_env()


def test_defaults(clean_env):
    clean_env.setenv("DATABASE_URL", "postgresql://localhost/mc")

    config = Config.from_env()

    assert config.database_url == "postgresql://localhost/mc"
    assert config.log_format == "json"
    assert config.log_level == "INFO"
    assert config.imweb is None


def test_log_level_is_uppercased(clean_env):
    clean_env.setenv("DATABASE_URL", "postgresql://localhost/mc")
    clean_env.setenv("MASTERCODE_LOG_LEVEL", "debug")
    clean_env.setenv("MASTERCODE_LOG_FORMAT", "text")

    config = Config.from_env()

    assert config.log_level == "DEBUG"
    assert config.log_format == "text"


def test_complete_imweb_settings(clean_env):
    for name, value in _IMWEB_ENV.items():
        clean_env.setenv(name, value)

    settings = ImwebSettings.from_env()

    assert settings == ImwebSettings(
        base_url="https://api.imweb.test",
        client_id="key",
        client_secret="secret",
        shop_id="shop",
        timeout_seconds=7.5,
    )


@pytest.mark.parametrize("missing", sorted(_IMWEB_ENV))
def test_any_missing_imweb_value_disables_settings(clean_env, missing):
    for name, value in _IMWEB_ENV.items():
        clean_env.setenv(name, value)
    clean_env.setenv(missing, "  ")

    assert ImwebSettings.from_env() is None
