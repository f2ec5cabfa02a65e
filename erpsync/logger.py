"""
Structured logging system for erpsync.

Provides centralized logging with console and file outputs, and metrics
tracking for monitoring vendor call volume and sync run health.
"""

import logging
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime
import json


class StructuredLogger:
    """
    Centralized logger with support for console and file outputs.
    Tracks metrics for monitoring sync run outcomes.
    """

    def __init__(
        self,
        name: str = "erpsync",
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize the structured logger.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            log_dir: Directory for log files (default: logs/)
            enable_file: Write logs to file
            enable_console: Output logs to console
        """
        self.logger = logging.getLogger(name)
        self.metrics = self._empty_metrics()
        self.configure(
            level=level,
            log_dir=log_dir,
            enable_file=enable_file,
            enable_console=enable_console,
        )

    def configure(
        self,
        level: str = "INFO",
        log_dir: Optional[Path] = None,
        enable_file: bool = True,
        enable_console: bool = True,
    ):
        """
        Replace level and handlers in place.

        Modules hold on to the instance returned by get_logger() at import
        time, so the CLI reconfigures it instead of creating a new one.
        Metrics are kept.
        """
        self.logger.setLevel(getattr(logging, level.upper()))
        for handler in list(self.logger.handlers):
            handler.close()
        self.logger.handlers.clear()  # Remove existing handlers

        # Console handler
        if enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(getattr(logging, level.upper()))
            console_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # File handler
        if enable_file:
            if log_dir is None:
                log_dir = Path("logs")
            log_dir.mkdir(parents=True, exist_ok=True)

            log_file = log_dir / f"erpsync_{datetime.now().strftime('%Y%m%d')}.log"
            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)  # Always log everything to file
            file_formatter = logging.Formatter(
                fmt='%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )
            file_handler.setFormatter(file_formatter)
            self.logger.addHandler(file_handler)

    @staticmethod
    def _empty_metrics() -> dict:
        return {
            "api_calls": 0,
            "throttled_calls": 0,
            "pages_fetched": 0,
            "runs_attempted": 0,
            "runs_succeeded": 0,
            "runs_partial": 0,
            "runs_failed": 0,
            "errors_by_type": {},
            "task_success_rate": {},
        }

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

    def _log(self, level: int, message: str, context: dict):
        """Internal logging method with context."""
        if context:
            # Dates and Decimals show up in window and payload context
            message = f"{message} | Context: {json.dumps(context, default=str, ensure_ascii=False)}"
        self.logger.log(level, message)

    # Metric tracking methods

    def reset_metrics(self):
        self.metrics = self._empty_metrics()

    def record_api_call(self):
        """Increment API call counter."""
        self.metrics["api_calls"] += 1

    def record_throttled(self):
        """Increment the counter of calls rejected by the capacity budget."""
        self.metrics["throttled_calls"] += 1

    def record_page(self):
        self.metrics["pages_fetched"] += 1

    def record_run_attempt(self, task_type: str):
        """Record a shard-run attempt for a task type."""
        self.metrics["runs_attempted"] += 1
        if task_type not in self.metrics["task_success_rate"]:
            self.metrics["task_success_rate"][task_type] = {
                "attempts": 0,
                "successes": 0
            }
        self.metrics["task_success_rate"][task_type]["attempts"] += 1

    def record_run_success(self, task_type: str):
        """Record a fully exhausted run."""
        self.metrics["runs_succeeded"] += 1
        if task_type in self.metrics["task_success_rate"]:
            self.metrics["task_success_rate"][task_type]["successes"] += 1

    def record_run_partial(self, task_type: str):
        """Record a run that stopped after some pages succeeded."""
        self.metrics["runs_partial"] += 1

    def record_run_failure(self, task_type: str, error_type: str):
        """Record a failed run."""
        self.metrics["runs_failed"] += 1

        # Track error types
        if error_type not in self.metrics["errors_by_type"]:
            self.metrics["errors_by_type"][error_type] = 0
        self.metrics["errors_by_type"][error_type] += 1

    def get_metrics(self) -> dict:
        """Return current metrics."""
        # Calculate success rates
        metrics_copy = self.metrics.copy()
        for task_type, stats in metrics_copy["task_success_rate"].items():
            if stats["attempts"] > 0:
                stats["success_rate"] = round(
                    stats["successes"] / stats["attempts"], 3
                )

        return metrics_copy

    def log_metrics_summary(self):
        """Log a summary of current metrics."""
        metrics = self.get_metrics()

        total_attempts = metrics["runs_attempted"]
        total_successes = metrics["runs_succeeded"]
        overall_rate = 0
        if total_attempts > 0:
            overall_rate = round(total_successes / total_attempts * 100, 1)

        self.info("=== Sync Session Metrics ===")
        self.info(f"API Calls: {metrics['api_calls']} (throttled: {metrics['throttled_calls']})")
        self.info(f"Pages: {metrics['pages_fetched']}")
        self.info(
            f"Runs: {total_successes}/{total_attempts} ({overall_rate}% success), "
            f"partial={metrics['runs_partial']} failed={metrics['runs_failed']}"
        )

        if metrics["task_success_rate"]:
            self.info("Task Success Rates:")
            for task_type, stats in metrics["task_success_rate"].items():
                rate = stats.get("success_rate", 0) * 100
                self.info(f"  {task_type}: {stats['successes']}/{stats['attempts']} ({rate:.1f}%)")

        if metrics["errors_by_type"]:
            self.info("Error Types:")
            for error_type, count in metrics["errors_by_type"].items():
                self.info(f"  {error_type}: {count}")


# Global logger instance
_global_logger: Optional[StructuredLogger] = None


def get_logger(
    name: str = "erpsync",
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
    """Reset the global logger (useful for testing)."""
    global _global_logger
    _global_logger = None
