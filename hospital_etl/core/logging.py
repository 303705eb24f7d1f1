import json
import logging
import logging.handlers
import socket
import sys
import time
import functools
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .config import get_settings


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.hostname = self._get_hostname()

    def _get_hostname(self) -> str:
        try:
            return socket.gethostname()
        except OSError:
            return "unknown"

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "hostname": self.hostname,
            "process_id": record.process,
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        for key in ("etl_job_id", "data_upload_id", "stage"):
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging() -> None:
    """Setup application logging configuration."""
    settings = get_settings()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.logging.level.upper()))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if settings.logging.json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            fmt=settings.logging.format,
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.logging.file_path:
        file_path = Path(settings.logging.file_path)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=file_path,
            maxBytes=settings.logging.max_bytes,
            backupCount=settings.logging.backup_count,
            encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("alembic").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a named logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class JobLoggerAdapter(logging.LoggerAdapter):
    """Prefixes messages with the ETL job id and attaches job context as extra fields."""

    def __init__(self, logger: logging.Logger, etl_job_id: Any, data_upload_id: Any = None, stage: Optional[str] = None):
        super().__init__(logger, {
            "etl_job_id": str(etl_job_id),
            "data_upload_id": str(data_upload_id) if data_upload_id else None,
            "stage": stage,
        })

    def process(self, msg: str, kwargs: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        if "extra" not in kwargs:
            kwargs["extra"] = {}

        kwargs["extra"].update(self.extra)
        return f"[ETL Job {self.extra['etl_job_id']}] {msg}", kwargs


def log_execution_time(logger: logging.Logger, level: int = logging.INFO):
    """
    Decorator to log function execution time.

    Args:
        logger: Logger instance to use
        level: Log level for the messages
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            func_name = func.__qualname__
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                execution_time = time.time() - start_time
                logger.error(
                    f"{func_name} failed after {execution_time:.4f} seconds: {e}",
                    exc_info=True
                )
                raise

            execution_time = time.time() - start_time
            logger.log(level, f"{func_name} executed in {execution_time:.4f} seconds")
            return result

        return wrapper
    return decorator


# Initialize logging when module is imported
if not logging.getLogger().handlers:
    setup_logging()
