"""Observability utilities for the Eaiser notebook engine.

Rotating file logging for the ``eaiser`` logger tree, plus per-tool
counters (timing, timeouts, failures by error code) behind ``eaiser_metrics``.
"""
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional, Tuple, Union

from eaiser.exceptions import EaiserError, OperationTimeoutError

logger = logging.getLogger(__name__)

# Default log directory (can be overridden via configure_logging)
DEFAULT_LOG_DIR = Path.home() / ".eaiser" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

# Logger tree configured by configure_logging
LOGGER_NAME = "eaiser"
LOG_FILE_NAME = "eaiser.log"


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Send the ``eaiser`` logger tree to a rotating ``eaiser.log``.

    Calling it again with the same directory does not add a second file
    handler. Console output goes to stderr; stdout carries the MCP stdio
    transport.

    Args:
        log_dir: Directory for log files. Defaults to ~/.eaiser/logs/
        level: Logging level (default: INFO)
        max_bytes: Size at which the file is rotated (default: 10 MB)
        backup_count: Rotated files kept (default: 5)
        console: Also log to stderr (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = log_path / LOG_FILE_NAME

    eaiser_logger = logging.getLogger(LOGGER_NAME)
    eaiser_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    for handler in eaiser_logger.handlers:
        if isinstance(handler, RotatingFileHandler) and Path(handler.baseFilename) == log_file.absolute():
            handler.setLevel(level)
            break
    else:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        eaiser_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in eaiser_logger.handlers
    ):
        console_handler = logging.StreamHandler()  # stderr
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        eaiser_logger.addHandler(console_handler)

    eaiser_logger.info(f"Logging to {log_file} (rotate at {max_bytes} bytes, keep {backup_count})")
    return log_path


@dataclass
class OperationMetrics:
    """Counters for one tool operation."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    timeout_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None
    # ErrorCode name -> occurrences
    error_codes: Dict[str, int] = field(default_factory=dict)


class MetricsCollector:
    """Per-operation counters for the notebook tools.

    Besides timing, it counts script runs that hit their time limit and
    breaks failures down by ``ErrorCode`` name, so a run of remote API
    failures or path rejections is visible without reading the log.
    """

    def __init__(self):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None,
        error_code: Optional[str] = None,
        timed_out: bool = False,
    ) -> None:
        """Record one call of a tool.

        Args:
            operation: Tool operation name ('run_script', 'chat', ...)
            duration_ms: Wall time in milliseconds
            success: False when the call raised or replied with an error
            error: Error text of a failed call
            error_code: ``ErrorCode`` name when the failure was an EaiserError
            timed_out: The call hit a time limit (script or remote endpoint)
        """
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)
            if timed_out:
                m.timeout_count += 1

            if success:
                m.success_count += 1
                return
            m.error_count += 1
            m.last_error = error
            m.last_error_time = datetime.now(timezone.utc)
            if error_code:
                m.error_codes[error_code] = m.error_codes.get(error_code, 0) + 1

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Snapshot of every operation's counters, keyed by operation name."""
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
                min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
                result[op] = {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'timeout_count': m.timeout_count,
                    'success_rate': m.success_count / m.count if m.count > 0 else 0,
                    'avg_duration_ms': round(avg_duration, 2),
                    'min_duration_ms': round(min_dur, 2),
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'error_codes': dict(m.error_codes),
                    'last_error': m.last_error,
                    'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
                }
            return result

    def get_summary(self) -> Dict[str, Any]:
        """Totals across all operations."""
        with self._lock:
            values = list(self._metrics.values())
            total_ops = sum(m.count for m in values)
            total_success = sum(m.success_count for m in values)
            error_codes: Dict[str, int] = defaultdict(int)
            for m in values:
                for code, n in m.error_codes.items():
                    error_codes[code] += n

            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total_ops,
                'total_success': total_success,
                'total_errors': sum(m.error_count for m in values),
                'total_timeouts': sum(m.timeout_count for m in values),
                'overall_success_rate': total_success / total_ops if total_ops > 0 else 1.0,
                'error_codes': dict(error_codes),
                'operations_tracked': sorted(self._metrics.keys()),
            }

    def reset(self) -> None:
        """Drop all counters and restart the uptime clock."""
        with self._lock:
            self._metrics.clear()
            self._start_time = datetime.now(timezone.utc)


metrics = MetricsCollector()


def _error_details(error: Any) -> Tuple[str, Optional[str], bool]:
    """Return (message, ErrorCode name, timed out) for a failure."""
    if isinstance(error, EaiserError):
        return str(error.message), error.code.name, isinstance(error, OperationTimeoutError)
    return str(error), None, False


@contextmanager
def timed_operation(operation: str, **context):
    """Time a tool call, log it and record it in ``metrics``.

    The yielded dict collects result details for the END log line. Tools
    that turn a failure into a reply set ``op['error']`` (an exception or
    a message); a script run that hit its limit sets ``op['timed_out']``.

    Example:
        with timed_operation('list_notes', category_id=3) as op:
            notes = repo.list(3)
            op['result_count'] = len(notes)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    raised = None
    try:
        yield result_info
    except Exception as e:
        raised = e
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        failure = raised if raised is not None else result_info.get('error')
        success = not failure
        error_msg, error_code, timed_out = (
            _error_details(failure) if failure else (None, None, False)
        )
        timed_out = timed_out or bool(result_info.get('timed_out'))
        metrics.record_operation(
            operation, duration_ms, success, error_msg,
            error_code=error_code, timed_out=timed_out,
        )

        result_str = ', '.join(
            f'{k}={v}' for k, v in result_info.items()
            if k not in ('correlation_id', 'error', 'timed_out')
        )
        if success:
            status = 'OK'
        else:
            status = f'ERROR{" " + error_code if error_code else ""}: {error_msg}'
        if timed_out:
            status += ' (timed out)'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )
