import io
import logging

import pytest

from budgetbook import logging_setup
from budgetbook.config import Settings
from budgetbook.errors import ConfigurationError


def test_defaults():
    settings = Settings.from_env({})
    assert settings.database_url is None
    assert settings.environment == "production"
    assert settings.upcoming_days == 7
    assert settings.currency == "IDR"
    assert not settings.is_development


def test_reads_prefixed_variables():
    settings = Settings.from_env({
        "BUDGETBOOK_DATABASE_URL": "sqlite:///x.db",
        "BUDGETBOOK_ENV": "Development",
        "BUDGETBOOK_UPCOMING_DAYS": "14",
        "BUDGETBOOK_CURRENCY": "usd",
        "BUDGETBOOK_MIRROR_PATH": "/tmp/mirror.json",
        "BUDGETBOOK_LOG_LEVEL": "debug",
    })
    assert settings.database_url == "sqlite:///x.db"
    assert settings.is_development
    assert settings.upcoming_days == 14
    assert settings.currency == "USD"
    assert settings.mirror_path == "/tmp/mirror.json"


def test_plain_database_url_fallback():
    assert Settings.from_env({"DATABASE_URL": "postgresql://db/x"}).database_url == "postgresql://db/x"


@pytest.mark.parametrize("env", [
    {"BUDGETBOOK_ENV": "staging"},
    {"BUDGETBOOK_UPCOMING_DAYS": "soon"},
    {"BUDGETBOOK_UPCOMING_DAYS": "-1"},
    {"BUDGETBOOK_LOG_LEVEL": "LOUD"},
])
def test_malformed_values_raise(env):
    with pytest.raises(ConfigurationError):
        Settings.from_env(env)


def test_configuration_error_is_runtime_error():
    assert issubclass(ConfigurationError, RuntimeError)


def test_parse_level():
    assert logging_setup.parse_level("warning") == logging.WARNING
    assert logging_setup.parse_level(10) == 10
    with pytest.raises(ValueError):
        logging_setup.parse_level("nope")


def test_configure_logging_attaches_one_handler(monkeypatch):
    monkeypatch.setattr(logging_setup, "_CONFIGURED", False)
    pkg = logging.getLogger("budgetbook")
    saved = (list(pkg.handlers), pkg.level, pkg.propagate)
    stream = io.StringIO()
    try:
        logging_setup.configure_logging("INFO", stream=stream)
        logging_setup.configure_logging("DEBUG", stream=stream)
        logging_setup.get_logger("budgetbook.test").info("hello")

        assert len([h for h in pkg.handlers if isinstance(h, logging.StreamHandler)]) == 1
        assert "budgetbook.test INFO hello" in stream.getvalue()
    finally:
        pkg.handlers[:] = saved[0]
        pkg.setLevel(saved[1])
        pkg.propagate = saved[2]
