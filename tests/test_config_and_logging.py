import logging

import pytest

from keystone_sync import config as config_module
from keystone_sync.config import Settings
from keystone_sync.logs import configure_logging, resolve_level


def test_settings_singleton_exists_and_matches_get_settings():
    assert hasattr(config_module, "settings")
    assert config_module.get_settings() is config_module.settings


def test_settings_defaults():
    s = Settings(_env_file=None)
    assert s.client == "openstack"
    assert s.default_domain == "Default"
    assert s.services_project == "services"
    assert s.default_region == "RegionOne"
    assert s.token_retries == 0
    assert s.reuse_token is True
    assert s.not_found_patterns == config_module.DEFAULT_NOT_FOUND_PATTERNS


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("KEYSTONE_SYNC_DEFAULT_REGION", "East")
    monkeypatch.setenv("KEYSTONE_SYNC_TOKEN_RETRIES", "3")
    monkeypatch.setenv("KEYSTONE_SYNC_NOT_FOUND_PATTERNS", '["gone"]')

    s = Settings(_env_file=None)

    assert s.default_region == "East"
    assert s.token_retries == 3
    assert s.not_found_patterns == ["gone"]


def test_configure_logging_uses_settings_level(monkeypatch):
    # Default settings.log_level is INFO in config.py
    called = {}

    def fake_basicConfig(*, level=None, **kwargs):
        called["level"] = level

    monkeypatch.setattr(logging, "basicConfig", fake_basicConfig)
    configure_logging()
    assert called["level"] == logging.INFO


def test_configure_logging_explicit_level(monkeypatch):
    called = {}

    def fake_basicConfig(*, level=None, **kwargs):
        called["level"] = level

    monkeypatch.setattr(logging, "basicConfig", fake_basicConfig)
    configure_logging("DEBUG", json_format=True)
    assert called["level"] == logging.DEBUG


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("debug", logging.DEBUG),
        ("WARNING", logging.WARNING),
        (logging.ERROR, logging.ERROR),
        ("15", 15),
        ("nonsense", logging.INFO),
    ],
)
def test_resolve_level(raw, expected):
    assert resolve_level(raw) == expected
