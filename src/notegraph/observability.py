"""Logging setup and per-operation timing for notegraph.

Engine operations on ``NoteGraphService`` are wrapped with ``@traced``: each
call gets a short correlation id in the debug log and its duration and
outcome are folded into the process-wide ``metrics`` collector.
"""
import functools
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notegraph" / "logs"
LOG_FILE_NAME = "notegraph.log"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar("F", bound=Callable[..., Any])

# Keyword arguments worth echoing in the trace log
_TRACE_KEYS = ("note_id", "category_id", "source_id", "target_id", "connection_id")


def _has_file_handler(target: logging.Logger, log_file: Path) -> bool:
    resolved = log_file.resolve()
    return any(
        isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == resolved
        for h in target.handlers
    )


def _has_console_handler(target: logging.Logger) -> bool:
    # RotatingFileHandler is itself a StreamHandler subclass
    return any(
        type(h) is logging.StreamHandler for h in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
    file_logging: bool = True,
) -> Optional[Path]:
    """Attach handlers to the ``notegraph`` logger.

    Calling it again with the same directory does not add duplicate
    handlers; the level of every attached handler is updated.

    Args:
        log_dir: Directory for ``notegraph.log``. Defaults to ~/.notegraph/logs/
        level: Logging level for the logger and its handlers.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated files to keep.
        console: Also log to stderr.
        file_logging: Write the rotating log file.

    Returns:
        The log directory, or None when file logging is off.
    """
    package_logger = logging.getLogger("notegraph")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_path = None
    if file_logging:
        log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
        log_path.mkdir(parents=True, exist_ok=True)
        log_file = log_path / LOG_FILE_NAME
        if not _has_file_handler(package_logger, log_file):
            handler = RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
            handler.setFormatter(formatter)
            package_logger.addHandler(handler)

    if console and not _has_console_handler(package_logger):
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)

    for handler in package_logger.handlers:
        handler.setLevel(level)

    logger.debug("Logging configured (level=%s, dir=%s)", logging.getLevelName(level), log_path)
    return log_path


@dataclass
class OperationStats:
    """Running totals for one engine operation."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    fastest_ms: Optional[float] = None
    slowest_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime] = None

    def observe(self, duration_ms: float, error: Optional[str] = None) -> None:
        self.calls += 1
        self.total_ms += duration_ms
        if self.fastest_ms is None or duration_ms < self.fastest_ms:
            self.fastest_ms = duration_ms
        self.slowest_ms = max(self.slowest_ms, duration_ms)
        if error is not None:
            self.failures += 1
            self.last_error = error
            self.last_error_at = datetime.now(timezone.utc)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "count": self.calls,
            "success_count": self.calls - self.failures,
            "error_count": self.failures,
            "avg_duration_ms": round(self.total_ms / self.calls, 2) if self.calls else 0.0,
            "min_duration_ms": round(self.fastest_ms or 0.0, 2),
            "max_duration_ms": round(self.slowest_ms, 2),
            "last_error": self.last_error,
            "last_error_time": (
                self.last_error_at.isoformat() if self.last_error_at else None
            ),
        }


@dataclass
class MetricsCollector:
    """Thread-safe in-process statistics keyed by operation name."""

    _stats: Dict[str, OperationStats] = field(default_factory=dict)
    _lock: Lock = field(default_factory=Lock)
    _started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        """Fold one call of ``operation`` into its totals."""
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.observe(duration_ms, None if success else (error or "unknown error"))

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation statistics as plain dictionaries."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in self._stats.items()}

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "uptime_seconds": (
                    datetime.now(timezone.utc) - self._started_at
                ).total_seconds(),
                "total_operations": sum(s.calls for s in self._stats.values()),
                "total_errors": sum(s.failures for s in self._stats.values()),
                "operations_tracked": sorted(self._stats),
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._started_at = datetime.now(timezone.utc)


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time the enclosed block and record it under ``operation``.

    Yields a dictionary the block can fill with result details
    (``result_count`` and the like); they are echoed in the END log line.
    Exceptions are recorded as failures and re-raised.
    """
    correlation_id = uuid.uuid4().hex[:8]
    details: Dict[str, Any] = {}
    logger.debug(
        "[%s] START %s %s",
        correlation_id, operation, " ".join(f"{k}={v}" for k, v in context.items()),
    )
    started = time.perf_counter()
    error = None
    try:
        yield details
    except Exception as e:
        error = str(e) or type(e).__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record_operation(operation, elapsed_ms, error is None, error)
        logger.debug(
            "[%s] END %s %.2fms %s %s",
            correlation_id,
            operation,
            elapsed_ms,
            "OK" if error is None else f"ERROR: {error}",
            " ".join(f"{k}={v}" for k, v in details.items()),
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorate a service method so every call goes through ``timed_operation``.

    Args:
        operation_name: Metrics key. Defaults to the function name.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {key: kwargs[key] for key in _TRACE_KEYS if key in kwargs}
            with timed_operation(name, **context) as details:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict)):
                    details["result_count"] = len(result)
                return result

        return wrapper  # type: ignore[return-value]
    return decorator
