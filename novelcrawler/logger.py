"""
Structured logging system for novelcrawler.

Provides centralized logging with console and file outputs, plus
thread-safe metrics for monitoring fetch health across worker threads.
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks fetch and job metrics; counters may be updated from any thread.
    """

    def __init__(
        self,
        name: str = "novelcrawler",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = False,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to a daily file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self._lock = threading.Lock()
        self.metrics = self._empty_metrics()
        self.configure(level=level, log_dir=log_dir, enable_file=enable_file, enable_console=enable_console)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "fetch_attempts": 0,
            "fetch_failures": 0,
            "fetch_retries": 0,
            "rate_limited": 0,
            "fragments_fetched": 0,
            "fragments_failed": 0,
            "jobs": {"success": 0, "failure": 0, "skipped": 0},
            "errors_by_type": {},
        }

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = False,
        enable_console: bool = True,
    ) -> None:
        """Replace handlers in place so module-level references stay valid."""
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()
        self.logger.propagate = False

        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"novelcrawler_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs):
        """Log debug message with optional context."""
        self._log(logging.DEBUG, message, kwargs)

    def info(self, message: str, **kwargs):
        """Log info message with optional context."""
        self._log(logging.INFO, message, kwargs)

    def warning(self, message: str, **kwargs):
        """Log warning message with optional context."""
        self._log(logging.WARNING, message, kwargs)

    def error(self, message: str, **kwargs):
        """Log error message with optional context."""
        self._log(logging.ERROR, message, kwargs)

    def critical(self, message: str, **kwargs):
        """Log critical message with optional context."""
        self._log(logging.CRITICAL, message, kwargs)

    def exception(self, message: str, **kwargs):
        """Log an error with the active exception's traceback."""
        self._log(logging.ERROR, message, kwargs, exc_info=True)

    def _log(self, level: int, message: str, context: dict, exc_info: bool = False):
        """Internal logging method with context."""
        if context:
            message = f"{message} | Context: {json.dumps(context, default=str)}"
        self.logger.log(level, message, exc_info=exc_info)

    # Metric tracking methods

    def record_fetch_attempt(self):
        """Increment the HTTP request counter."""
        with self._lock:
            self.metrics["fetch_attempts"] += 1

    def record_fetch_retry(self, rate_limited: bool = False):
        """Record a retried request."""
        with self._lock:
            self.metrics["fetch_retries"] += 1
            if rate_limited:
                self.metrics["rate_limited"] += 1

    def record_fetch_failure(self, error_type: str):
        """Record a fetch that gave up."""
        with self._lock:
            self.metrics["fetch_failures"] += 1
            errors = self.metrics["errors_by_type"]
            errors[error_type] = errors.get(error_type, 0) + 1

    def record_fragment(self, success: bool):
        """Record a single fragment fetch outcome."""
        key = "fragments_fetched" if success else "fragments_failed"
        with self._lock:
            self.metrics[key] += 1

    def record_job(self, outcome: str):
        """Record a terminal job outcome (success, failure or skipped)."""
        with self._lock:
            jobs = self.metrics["jobs"]
            jobs[outcome] = jobs.get(outcome, 0) + 1

    def get_metrics(self) -> dict:
        """Return a snapshot of current metrics."""
        with self._lock:
            metrics_copy = json.loads(json.dumps(self.metrics))

        attempts = metrics_copy["fetch_attempts"]
        if attempts > 0:
            metrics_copy["fetch_failure_rate"] = round(
                metrics_copy["fetch_failures"] / attempts, 3
            )
        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        self.info("=== Crawl Session Metrics ===")
        self.info(f"HTTP requests: {metrics['fetch_attempts']} "
                  f"(retries: {metrics['fetch_retries']}, rate limited: {metrics['rate_limited']})")
        self.info(f"Chapters: {metrics['fragments_fetched']} fetched, "
                  f"{metrics['fragments_failed']} failed attempts")

        jobs = metrics["jobs"]
        self.info(f"Novels: {jobs.get('success', 0)} succeeded, "
                  f"{jobs.get('skipped', 0)} skipped, {jobs.get('failure', 0)} failed")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "novelcrawler",
    level: str = "INFO",
    **kwargs
) -> StructuredLogger:
    """
    Get or create the global logger instance.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        **kwargs: Additional arguments passed to StructuredLogger

    Returns:
        StructuredLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = StructuredLogger(name=name, level=level, **kwargs)

    return _global_logger


def reset_logger():
    """Reset the global logger's metrics and handlers (useful for testing)."""
    global _global_logger
    if _global_logger is not None:
        _global_logger.metrics = StructuredLogger._empty_metrics()
        _global_logger.configure()
