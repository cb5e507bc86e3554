# =============================================================================
# File: tests/test_config.py
# Description: Settings loading and logging setup
# =============================================================================

import json
import logging

import pytest

from hirechat.common.enums.enums import UserRole
from hirechat.config.logging_config import ProductionFormatter, get_logger_level_from_env, setup_logging
from hirechat.config.messaging_config import MessagingConfig, get_messaging_config, reset_messaging_config
from hirechat.config.pg_config import PostgresConfig
from hirechat.config.redis_config import RedisConfig
from hirechat.utils.datetime_utils import parse_timestamp_robust

pytestmark = pytest.mark.unit


class TestMessagingConfig:

    def test_defaults(self):
        config = MessagingConfig()
        assert config.history_limit == 100
        assert config.max_attachment_bytes == 10 * 1024 * 1024
        assert config.typing_channel_prefix == "room:"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("CHAT_HISTORY_LIMIT", "25")
        monkeypatch.setenv("CHAT_PARTNER_TYPING_TIMEOUT_SECONDS", "3.5")
        config = MessagingConfig()
        assert config.history_limit == 25
        assert config.partner_typing_timeout_seconds == 3.5

    def test_inherits_base_settings(self, monkeypatch):
        monkeypatch.setenv("CHAT_UNKNOWN_SETTING", "x")
        config = MessagingConfig()
        assert MessagingConfig.model_config["env_prefix"] == "CHAT_"
        assert MessagingConfig.model_config["extra"] == "ignore"
        assert PostgresConfig.model_config["env_prefix"] == "PG_"
        assert PostgresConfig.model_config["case_sensitive"] is False
        assert not hasattr(config, "unknown_setting")

    def test_cached_factory(self, monkeypatch):
        reset_messaging_config()
        first = get_messaging_config()
        monkeypatch.setenv("CHAT_HISTORY_LIMIT", "10")
        assert get_messaging_config() is first
        reset_messaging_config()
        assert get_messaging_config().history_limit == 10
        reset_messaging_config()


def test_secrets_are_masked():
    config = RedisConfig(url="redis://:hunter2@cache:6379/0")
    assert "hunter2" not in repr(config)
    assert "hunter2" not in str(config.to_dict())
    assert config.to_dict(mask_secrets=False)["url"] == "redis://:hunter2@cache:6379/0"
    assert "secret" not in repr(PostgresConfig(dsn="postgresql://app:secret@db/hirechat"))


def test_role_parsing_is_case_insensitive():
    assert UserRole.parse(" Manager ") == UserRole.MANAGER
    with pytest.raises(ValueError):
        UserRole.parse("admin")


@pytest.mark.parametrize("raw,expected", [
    ("2025-11-25 24:00:00+00:00", "2025-11-26T00:00:00+00:00"),
    ("2024-03-01T09:00:00Z", "2024-03-01T09:00:00+00:00"),
    ("2024-03-01T09:00:00", "2024-03-01T09:00:00+00:00"),
])
def test_parse_timestamp_robust(raw, expected):
    assert parse_timestamp_robust(raw).isoformat() == expected


def test_parse_timestamp_fallback():
    assert parse_timestamp_robust("yesterday-ish") is None
    assert parse_timestamp_robust(42, fallback="n/a") == "n/a"


class TestLogging:

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_json_mode(self):
        setup_logging("hirechat-test", log_level="debug", enable_json=True)
        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, ProductionFormatter)

    def test_file_handler(self, tmp_path):
        log_file = tmp_path / "hirechat.log"
        setup_logging("hirechat-test", log_file=str(log_file), enable_json=False)
        logging.getLogger("hirechat.test").warning("written to file")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "written to file" in log_file.read_text()

    def test_per_logger_override(self, monkeypatch):
        monkeypatch.setenv("LOGLEVEL_HIRECHAT_CHAT_TYPING_SIGNAL", "error")
        assert get_logger_level_from_env("hirechat.chat.typing_signal", logging.INFO) == logging.ERROR
        assert get_logger_level_from_env("hirechat.chat.other", logging.INFO) == logging.INFO

    def test_production_formatter_includes_room_context(self):
        record = logging.LogRecord("hirechat.chat.room_session", logging.INFO, __file__, 1, "sent", None, None)
        record.room = "p1:u2"
        record.user_id = "u1"
        line = json.loads(ProductionFormatter().format(record))
        assert line["message"] == "sent"
        assert line["room"] == "p1:u2"
        assert line["user_id"] == "u1"
        assert "project_id" not in line
