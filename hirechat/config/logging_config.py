# =============================================================================
# File: hirechat/config/logging_config.py
# Description: Logging configuration using the Rich framework
#              (console output for development, JSON lines for production)
# =============================================================================

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(key, '').lower()
    return value in ('true', '1', 'yes', 'on') if value else default


def get_env_int(key: str, default: int) -> int:
    """Get integer value from environment variable."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default


HIRECHAT_THEME = Theme({
    "debug": "magenta dim",
    "info": "green",
    "warning": "dark_goldenrod",
    "error": "red",
    "critical": "bold red",
    "timestamp": "grey70",
    "logger_name": "grey35",
    "message": "grey85",
})

PLAIN_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)-40s] %(message)s"
PLAIN_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVEL_MAP = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'WARN': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}


class ProductionFormatter(logging.Formatter):
    """JSON formatter for production environments"""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON"""
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Room/user context attached via `extra=`
        if get_env_bool('LOG_JSON_INCLUDE_EXTRAS', True):
            for attr in ('user_id', 'project_id', 'room', 'message_id'):
                if hasattr(record, attr):
                    log_obj[attr] = str(getattr(record, attr))

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj)


def get_logger_level_from_env(logger_name: str, default_level: int) -> int:
    """Get logger level from environment variable."""
    # e.g., "hirechat.chat.room_session" -> "LOGLEVEL_HIRECHAT_CHAT_ROOM_SESSION"
    env_name = f"LOGLEVEL_{logger_name.replace('.', '_').upper()}"

    level_str = os.getenv(env_name, '').upper()
    if level_str:
        return _LEVEL_MAP.get(level_str, default_level)

    return default_level


def setup_logging(
        service_name: str = "hirechat",
        log_level: Optional[str] = None,
        log_file: Optional[str] = None,
        enable_json: Optional[bool] = None,
        rich_tracebacks: bool = True,
) -> None:
    """
    Configure logging for the messaging core.

    Args:
        service_name: Name used for the startup logger
        log_level: Override log level (defaults to LOG_LEVEL env, then INFO)
        log_file: Optional rotating log file path (defaults to LOG_FILE env)
        enable_json: Emit JSON lines instead of Rich console output
        rich_tracebacks: Enable rich tracebacks (pretty exceptions)
    """
    level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
    log_file = log_file or os.getenv("LOG_FILE")

    if enable_json is None:
        enable_json = get_env_bool('LOG_JSON', False)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    use_rich = not enable_json and (
            sys.stdout.isatty() or
            get_env_bool("FORCE_COLOR", False)
    )

    if use_rich:
        console = Console(
            theme=HIRECHAT_THEME,
            force_terminal=get_env_bool("FORCE_COLOR", False),
            width=get_env_int('LOG_CONSOLE_WIDTH', 0) or None,
        )
        rich_handler = RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=rich_tracebacks,
            tracebacks_show_locals=False,
        )
        root_logger.addHandler(rich_handler)

    elif enable_json:
        json_handler = logging.StreamHandler(sys.stdout)
        json_handler.setFormatter(ProductionFormatter())
        root_logger.addHandler(json_handler)

    else:
        plain_handler = logging.StreamHandler(sys.stdout)
        plain_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(plain_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=get_env_int('LOG_MAX_SIZE_MB', 100) * 1024 * 1024,
            backupCount=get_env_int('LOG_BACKUP_COUNT', 5),
            encoding='utf-8',
        )
        # Always plain for files
        file_handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=PLAIN_DATEFMT))
        root_logger.addHandler(file_handler)

    default_noise_config = {
        "asyncio": logging.WARNING,
        "asyncpg": logging.WARNING,
        "redis": logging.WARNING,
        "hirechat.chat.typing_signal": logging.INFO,
        "hirechat.infra.pg_change_feed": logging.INFO,
    }

    for logger_name, default_level in default_noise_config.items():
        logging.getLogger(logger_name).setLevel(
            get_logger_level_from_env(logger_name, default_level)
        )

    # Explicit LOGLEVEL_<NAME> overrides for loggers not listed above
    for key, value in os.environ.items():
        if not key.startswith('LOGLEVEL_'):
            continue
        logger_name = key[len('LOGLEVEL_'):].lower().replace('_', '.')
        level_value = _LEVEL_MAP.get(value.upper())
        if level_value is not None:
            logging.getLogger(logger_name).setLevel(level_value)

    logging.getLogger(f"{service_name}.startup").info(
        f"Logging configured for {service_name} (level={level}, json={enable_json})"
    )


# =============================================================================
# EOF
# =============================================================================
