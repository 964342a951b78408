"""
Logging and operation timing for the PKI bootstrap pipeline.
"""
import json
import logging
import logging.handlers
import sys
import time
import traceback
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, asdict
from contextlib import contextmanager


CONSOLE_FORMAT = '[%(asctime)s][%(levelname)s] %(name)s - %(message)s'


@dataclass
class LogEntry:
    """Structured log entry for JSON logging."""
    timestamp: str
    level: str
    logger_name: str
    message: str
    module: str
    function: str
    line_number: int
    process_id: int
    extra_data: Optional[Dict[str, Any]] = None
    exception_info: Optional[Dict[str, Any]] = None


@dataclass
class OperationMetric:
    """Timing of one external operation (signing, bundling, download)."""
    operation: str
    duration_ms: float
    timestamp: str
    success: bool
    error_message: Optional[str] = None
    extra_data: Optional[Dict[str, Any]] = None


class JSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            level=record.levelname,
            logger_name=record.name,
            message=record.getMessage(),
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            process_id=record.process,
            extra_data=getattr(record, 'extra_data', None)
        )

        # Add exception information if present
        if record.exc_info:
            log_entry.exception_info = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(asdict(log_entry), default=str)


class PerformanceMonitor:
    """Collects timings of external operations for the run summary."""

    def __init__(self):
        self.metrics: List[OperationMetric] = []
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure_operation(self, operation: str, extra_data: Optional[Dict[str, Any]] = None):
        """Context manager to measure operation performance."""
        start_time = time.time()
        success = True
        error_message = None

        try:
            yield
        except Exception as e:
            success = False
            error_message = str(e)
            raise
        finally:
            duration_ms = (time.time() - start_time) * 1000

            self.metrics.append(OperationMetric(
                operation=operation,
                duration_ms=duration_ms,
                timestamp=datetime.now().isoformat(),
                success=success,
                error_message=error_message,
                extra_data=extra_data
            ))

            self.logger.debug(
                f"Operation {operation} took {duration_ms:.1f} ms",
                extra={
                    'extra_data': {
                        'operation': operation,
                        'duration_ms': duration_ms,
                        'success': success,
                        'error_message': error_message,
                        **(extra_data if extra_data else {})
                    }
                }
            )

    def get_metrics(self, operation: Optional[str] = None) -> List[OperationMetric]:
        """Get recorded metrics, optionally for one operation."""
        if operation:
            return [m for m in self.metrics if m.operation == operation]
        return list(self.metrics)

    def get_operation_stats(self, operation: str) -> Dict[str, Any]:
        """Get statistics for a specific operation."""
        metrics = self.get_metrics(operation=operation)

        if not metrics:
            return {}

        durations = [m.duration_ms for m in metrics]
        success_count = sum(1 for m in metrics if m.success)

        return {
            'operation': operation,
            'total_calls': len(metrics),
            'success_count': success_count,
            'failure_count': len(metrics) - success_count,
            'avg_duration_ms': sum(durations) / len(durations),
            'max_duration_ms': max(durations)
        }


class LoggingService:
    """Configures the root logger for one pipeline run."""

    def __init__(self, config, stream=None):
        """
        Initialize logging service with configuration.

        Args:
            config: Config providing ``log_level`` and ``log_file_path``
            stream: Console stream, defaults to standard error
        """
        self.config = config
        self.stream = stream if stream is not None else sys.stderr
        self.performance_monitor = PerformanceMonitor()
        self._setup_logging()
        self.logger = logging.getLogger(__name__)
        self.logger.debug("Logging service initialized")

    def _setup_logging(self):
        """Attach the console and JSON file handlers to the root logger."""
        # Create logs directory
        log_dir = Path(self.config.log_file_path).parent
        log_dir.mkdir(parents=True, exist_ok=True)

        # Clear existing handlers
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
            handler.close()

        # Set log level
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        root_logger.setLevel(log_level)

        # Append-only JSON lines file
        file_handler = logging.handlers.RotatingFileHandler(
            filename=self.config.log_file_path,
            mode='a',
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(log_level)

        console_handler = logging.StreamHandler(self.stream)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        console_handler.setLevel(log_level)

        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

    def get_performance_stats(self, operation: Optional[str] = None) -> Dict[str, Any]:
        """Get performance statistics."""
        if operation:
            return self.performance_monitor.get_operation_stats(operation)

        operations = set(m.operation for m in self.performance_monitor.get_metrics())
        return {
            op: self.performance_monitor.get_operation_stats(op)
            for op in operations
        }

    def shutdown(self):
        """Flush and detach the handlers installed by this service."""
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            handler.flush()
            handler.close()
            root_logger.removeHandler(handler)
