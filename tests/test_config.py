from __future__ import annotations

import pytest

from hackjudge.config import DEFAULT_DB_PATH, load_settings
from hackjudge.errors import ValidationError


def test_defaults():
    settings = load_settings({})
    assert settings.db_path == DEFAULT_DB_PATH
    assert settings.storage == "sqlite"
    assert settings.db_timeout == 5.0
    assert settings.seed_demo is False


def test_overrides():
    settings = load_settings(
        {
            "JUDGING_DB_PATH": "/tmp/x.sqlite",
            "JUDGING_STORAGE": "Memory",
            "JUDGING_DB_TIMEOUT": "2.5",
            "JUDGING_ADMIN_PASSWORD": "pw",
            "JUDGING_LOG_LEVEL": "debug",
            "JUDGING_SEED_DEMO": "yes",
        }
    )
    assert settings.storage == "memory"
    assert settings.db_timeout == 2.5
    assert settings.admin_password == "pw"
    assert settings.log_level == "DEBUG"
    assert settings.seed_demo is True


@pytest.mark.parametrize(
    "env",
    [{"JUDGING_STORAGE": "postgres"}, {"JUDGING_DB_TIMEOUT": "soon"}, {"JUDGING_DB_TIMEOUT": "0"}],
)
def test_invalid_values(env):
    with pytest.raises(ValidationError):
        load_settings(env)
