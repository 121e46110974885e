# dealerbot/infra/logging_config.py
import logging
import sys
import json
from datetime import datetime, timezone


def mask_identity(identity: str | None) -> str:
    """Mask a phone-number-like identity for logs: ``5511****00``."""
    if not identity:
        return "***"
    if len(identity) > 6:
        return identity[:4] + "****" + identity[-2:]
    return "***"


# Conversation fields copied from ``extra=`` onto every formatted line.
CONTEXT_FIELDS = ("identity", "conversation_id", "node", "provider", "request_id")


def record_context(record: logging.LogRecord) -> dict:
    """Context fields present on a record; identities come back masked."""
    context = {}
    for field in CONTEXT_FIELDS:
        value = getattr(record, field, None)
        if value is None:
            continue
        context[field] = mask_identity(value) if field == "identity" else value
    return context


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for production log shipping"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            **record_context(record),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Coloured single-line format for development"""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }
    # request_id and conversation_id are long; keep the console line short
    SHOWN = ("identity", "node", "provider")

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS["RESET"])
        reset = self.COLORS["RESET"]
        timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S")

        context = record_context(record)
        parts = " ".join(f"{k}={context[k]}" for k in self.SHOWN if k in context)
        suffix = f" [{parts}]" if parts else ""

        line = f"{color}{timestamp} {record.levelname:8}{reset} {record.name}{suffix} - {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", use_json: bool = False) -> None:
    """
    Configure application logging

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: If True, use JSON format (for production)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if use_json:
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    # Provider and lead HTTP calls are logged by our own code
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    for noisy in ("httpx", "aiohttp.access", "asyncpg"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={level}, json={use_json}")


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name"""
    return logging.getLogger(name)


class LogContext:
    """Add conversation context to log records"""

    def __init__(
            self,
            logger: logging.Logger,
            identity: str | None = None,
            conversation_id: str | None = None,
            node: str | None = None,
            request_id: str | None = None,
    ):
        self.logger = logger
        self.context = {
            k: v for k, v in {
                "identity": identity,
                "conversation_id": conversation_id,
                "node": node,
                "request_id": request_id,
            }.items() if v is not None
        }

    def bind(self, **fields) -> "LogContext":
        """Add or replace context fields (e.g., the node once it is known)."""
        self.context.update({k: v for k, v in fields.items() if v is not None})
        return self

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.pop("extra", {})
        extra.update(self.context)
        self.logger.log(level, msg, *args, extra=extra, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)
