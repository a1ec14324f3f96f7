"""
Logging setup: structured JSON (or plain text) lines carrying the request and
workflow-instance context, secret masking, optional daily-rotated log file.
"""
import json
import logging
import re
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from bizflow.core.config import get_settings

# Fields merged into every record: request_id, tenant_id, instance_id, ...
log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

_RECORD_ATTRIBUTES = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SensitiveDataFilter(logging.Filter):
    """Masks credentials in messages and string arguments"""

    PATTERNS = [
        (re.compile(r'(password|token|secret|api[_-]?key)(["\']?\s*[:=]\s*["\']?)[^"\'\s&,]+', re.IGNORECASE),
         r"\1\2***"),
        (re.compile(r"(Bearer\s+)[^\s\"]+", re.IGNORECASE), r"\1***"),
        (re.compile(r"(x-api-key:\s*)[^\s\"]+", re.IGNORECASE), r"\1***"),
    ]

    def __init__(self, enabled: bool = True):
        super().__init__()
        self.enabled = enabled

    @classmethod
    def mask(cls, text: str) -> str:
        for pattern, replacement in cls.PATTERNS:
            text = pattern.sub(replacement, text)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if self.enabled:
            if isinstance(record.msg, str):
                record.msg = self.mask(record.msg)
            if isinstance(record.args, tuple):
                record.args = tuple(self.mask(a) if isinstance(a, str) else a for a in record.args)
        return True


class ContextualFormatter(logging.Formatter):
    """One JSON object per line: base fields, then log context, then `extra=` fields"""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(log_context.get())
        entry.update({k: v for k, v in vars(record).items() if k not in _RECORD_ATTRIBUTES})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class LoggingConfig:
    """Process-wide logging configuration"""

    _configured = False
    _level_counts: Dict[str, int] = {}

    @classmethod
    def _levels(cls, overrides: Optional[Dict[str, str]]) -> Dict[str, str]:
        settings = get_settings()
        levels = {
            "sqlalchemy.engine": "INFO" if settings.log_sqlalchemy else "WARNING",
            "sqlalchemy.pool": "WARNING",
            "uvicorn.access": "INFO" if settings.log_uvicorn_access else "WARNING",
            "httpx": "WARNING",
            "bizflow": settings.log_level,
        }
        levels.update(settings.module_levels)
        levels.update(overrides or {})
        return levels

    @classmethod
    def _file_handler(cls) -> TimedRotatingFileHandler:
        settings = get_settings()
        path = Path(settings.log_file_path)
        if not path.is_absolute():
            path = Path(__file__).resolve().parents[3] / path
        path.parent.mkdir(parents=True, exist_ok=True)
        return TimedRotatingFileHandler(
            filename=str(path),
            when="midnight",
            backupCount=settings.log_file_retention,
            encoding="utf-8",
        )

    @classmethod
    def configure(cls, module_levels: Optional[Dict[str, str]] = None):
        """Install handlers once; later calls are no-ops"""
        if cls._configured:
            return
        settings = get_settings()

        if settings.log_format == "json":
            formatter: logging.Formatter = ContextualFormatter(datefmt=DATE_FORMAT)
        else:
            formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)
        masking = SensitiveDataFilter(enabled=not settings.log_sensitive_data)

        handlers = [logging.StreamHandler(sys.stdout)]
        if settings.log_file_enabled:
            handlers.append(cls._file_handler())
        for handler in handlers:
            handler.setFormatter(formatter)
            handler.addFilter(masking)

        logging.basicConfig(
            level=getattr(logging, settings.log_level.upper(), logging.INFO),
            handlers=handlers,
            force=True,
        )
        for name, level in cls._levels(module_levels).items():
            logging.getLogger(name).setLevel(getattr(logging, str(level).upper(), logging.INFO))

        cls._level_counts = {name: 0 for name in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        logging.getLogger().addHandler(cls._CountingHandler(logging.DEBUG))
        cls._configured = True

    @classmethod
    def get_logger(cls, name: str) -> logging.Logger:
        cls.configure()
        return logging.getLogger(name)

    @classmethod
    def set_context(cls, **fields):
        """Add fields (None values dropped) to the current log context"""
        merged = dict(log_context.get())
        merged.update({k: v for k, v in fields.items() if v is not None})
        log_context.set(merged)

    @classmethod
    def clear_context(cls):
        log_context.set({})

    @classmethod
    @contextmanager
    def context(cls, **fields) -> Iterator[None]:
        """Scoped log context, restored on exit"""
        token = log_context.set({**log_context.get(), **{k: v for k, v in fields.items() if v is not None}})
        try:
            yield
        finally:
            log_context.reset(token)

    @classmethod
    def get_metrics(cls) -> Dict[str, int]:
        """Records emitted per level since configuration"""
        return dict(cls._level_counts)

    class _CountingHandler(logging.Handler):
        def emit(self, record: logging.LogRecord):
            if record.levelname in LoggingConfig._level_counts:
                LoggingConfig._level_counts[record.levelname] += 1


LoggingConfig.configure()
