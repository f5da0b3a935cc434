import logging
import re
from typing import Any

_CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def sanitize_log_value(value: Any, max_length: int = 512) -> str:
    """
    Neutralize user-controlled values (object keys, file names, case ids)
    before they reach log sinks.

    Newlines are escaped, other control characters replaced, and the result is
    truncated so a crafted file name cannot forge extra audit-looking lines.
    """
    if value is None:
        return "<none>"

    text = str(value)
    text = text.replace("\r", "\\r").replace("\n", "\\n")
    text = _CONTROL_CHAR_PATTERN.sub("?", text)

    if len(text) > max_length:
        text = text[:max_length] + "...[truncated]"

    return text


class LogSanitizerFilter(logging.Filter):
    """Filter that sanitizes %-style log arguments."""

    def __init__(self, max_length: int = 512):
        super().__init__("lighthouse-log-sanitizer")
        self.max_length = max_length

    def filter(self, record: logging.LogRecord) -> bool:
        if not record.args:
            return True

        if isinstance(record.args, tuple):
            record.args = tuple(
                arg if isinstance(arg, (int, float)) else sanitize_log_value(arg, self.max_length)
                for arg in record.args
            )
        elif isinstance(record.args, dict):
            record.args = {
                key: sanitize_log_value(val, self.max_length)
                for key, val in record.args.items()
            }
        return True


def install_log_sanitizer(
    target_logger: logging.Logger | None = None, max_length: int = 512
) -> None:
    """Attach the sanitizer filter to the given logger (defaults to root), once."""
    logger = target_logger or logging.getLogger()
    for existing in logger.filters:
        if isinstance(existing, LogSanitizerFilter):
            return
    logger.addFilter(LogSanitizerFilter(max_length))


def configure_logging(level: str = "INFO") -> None:
    """Basic process-wide logging setup used by the app factory."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    root = logging.getLogger()
    for handler in root.handlers:
        if not any(isinstance(f, LogSanitizerFilter) for f in handler.filters):
            handler.addFilter(LogSanitizerFilter())
