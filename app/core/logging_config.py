"""
Logging configuration for the ISP billing API.

Payment logs carry payer phone numbers and provider credentials, so every
handler masks MSISDNs and structured payloads go through sanitize_log_data.
"""
import logging
import re
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

LOG_FILE_NAME = "isp_billing.log"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# 2547XXXXXXXX / 2541XXXXXXXX
MSISDN_PATTERN = re.compile(r"\b(254[71]\d)(\d{4})(\d{4})\b")

SENSITIVE_KEYS = [
    "password", "token", "secret", "key", "api_key",
    "passkey", "consumer_key", "consumer_secret",
    "authorization", "database_url",
]

REDACTED = "***REDACTED***"


def mask_msisdn(text: str) -> str:
    """Keep the network prefix and last four digits of any Kenyan MSISDN."""
    return MSISDN_PATTERN.sub(r"\1****\3", text)


class PhoneMaskingFilter(logging.Filter):
    """Masks payer phone numbers in the rendered log message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = mask_msisdn(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def _build_handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
    handler.addFilter(PhoneMaskingFilter())
    return handler


def setup_logging(log_level: str = "INFO", log_dir: str = "logs"):
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log file
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    root.addHandler(_build_handler(logging.StreamHandler(sys.stdout), level, CONSOLE_FORMAT))
    root.addHandler(_build_handler(
        RotatingFileHandler(log_path / LOG_FILE_NAME, maxBytes=10 * 1024 * 1024, backupCount=5),
        level,
        FILE_FORMAT,
    ))

    # Quiet third-party chatter; requests logs every Daraja connection through urllib3
    for name in ("uvicorn", "uvicorn.access", "urllib3", "sqlalchemy.engine"):
        logging.getLogger(name).setLevel(logging.WARNING)


def sanitize_log_data(data: dict) -> dict:
    """
    Redact secrets from a payload before it is logged.

    Nested dictionaries and lists are walked, so a full STK push payload
    (which carries the derived ``Password``) or a callback envelope can be
    logged safely.

    Args:
        data: Dictionary to sanitize

    Returns:
        Copy of the dictionary with secret values replaced
    """
    sanitized = {}
    for key, value in data.items():
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = REDACTED
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        elif isinstance(value, list):
            sanitized[key] = [sanitize_log_data(v) if isinstance(v, dict) else v for v in value]
        else:
            sanitized[key] = value
    return sanitized
