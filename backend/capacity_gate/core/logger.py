import logging
import re
import sys
from pathlib import Path
from typing import Any, Dict

import structlog
from loguru import logger as loguru_logger

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)

# Chatty client libraries only report problems
QUIET_LOGGERS = ("botocore", "boto3", "urllib3", "redis")


class SensitiveDataFilter(logging.Filter):
    """Redacts credentials from log records and structured event dicts"""

    sensitive_fields = {
        'password', 'redis_password', 'token', 'secret', 'authorization',
        'api_key', 'x-api-key', 'cookie', 'aws_access_key_id',
        'aws_secret_access_key', 'aws_session_token',
    }

    patterns = [
        (re.compile(r'(redis(?:s)?://[^:/@\s]*:)([^@\s]+)(@)', re.IGNORECASE), r'\1[REDACTED]\3'),
        (re.compile(r'AKIA[0-9A-Z]{16}'), '[REDACTED]'),
        (re.compile(r'(password["\s]*[:=]["\s]*)([^"\s,}]+)', re.IGNORECASE), r'\1[REDACTED]'),
        (re.compile(r'(token["\s]*[:=]["\s]*)([^"\s,}]+)', re.IGNORECASE), r'\1[REDACTED]'),
    ]

    def filter(self, record):
        if isinstance(record.msg, (dict, str)):
            record.msg = self.redact(record.msg)
        return True

    def redact(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: '[REDACTED]' if str(k).lower() in self.sensitive_fields else self.redact(v)
                for k, v in data.items()
            }
        if isinstance(data, str):
            for pattern, replacement in self.patterns:
                data = pattern.sub(replacement, data)
        return data


_redactor = SensitiveDataFilter()


def redact_event(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """structlog processor applying SensitiveDataFilter to every event"""
    return _redactor.redact(event_dict)


def setup_logging(level: str = "INFO", log_dir: str = "logs", json_logs: bool = False) -> None:
    """Configure structlog for application events, stdlib logging for client
    libraries and loguru for rotated log files.

    ``json_logs`` switches the console renderer to one JSON object per line
    (production); development keeps the colored console output.
    """
    log_level = getattr(logging, level.upper())
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            redact_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_redactor)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[handler],
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    loguru_logger.remove()
    loguru_logger.add(sys.stdout, level=level.upper(), format=CONSOLE_FORMAT, serialize=json_logs)
    for filename, file_level in (("app.log", "INFO"), ("error.log", "ERROR")):
        loguru_logger.add(
            log_path / filename,
            level=file_level,
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            format=FILE_FORMAT,
            serialize=json_logs,
        )


class LoggerMixin:
    """Mixin to add structured logging to classes"""

    @property
    def logger(self):
        return structlog.get_logger(self.__class__.__name__)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """Get a structured logger instance"""
    return structlog.get_logger(name or __name__)
