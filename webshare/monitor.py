from typing import Callable, Optional
from datetime import datetime, timedelta
from collections import deque

from webshare.logger_config import setup_logger

logger = setup_logger()


class Monitor:
    def __init__(self, name: str, failure_threshold: int, window_seconds: int = 3600,
                 alert_handler: Optional[Callable[[str], None]] = None):
        """
        Track the outcome of a recurring background task.

        Args:
            name: Task name used in alerts
            failure_threshold: Number of failures inside the window before raising an alert
            window_seconds: Time window in seconds to count failures in
            alert_handler: Optional callback for alerts. If None, logs an error
        """
        if failure_threshold <= 0:
            raise ValueError("Failure threshold must be positive")

        self.name = name
        self._failure_threshold = failure_threshold
        self._window_seconds = window_seconds
        self._alert_handler = alert_handler or self._default_alert_handler
        self._total_passes = 0
        self._total_failures = 0
        self._failure_timestamps = deque()
        self._last_status_time = datetime.now()

    def _clean_old_failures(self) -> None:
        """Remove failures outside the time window."""
        window_start = datetime.now() - timedelta(seconds=self._window_seconds)
        while self._failure_timestamps and self._failure_timestamps[0] < window_start:
            self._failure_timestamps.popleft()

    def _default_alert_handler(self, message: str) -> None:
        logger.error(message)

    def pass_(self) -> None:
        """Record a successful run."""
        self._total_passes += 1
        self._last_status_time = datetime.now()
        self._clean_old_failures()

    def fail(self) -> None:
        """
        Record a failed run.
        Triggers an alert when the failures inside the window reach the threshold.
        """
        now = datetime.now()
        self._failure_timestamps.append(now)
        self._total_failures += 1
        self._last_status_time = now

        self._clean_old_failures()

        if len(self._failure_timestamps) == self._failure_threshold:
            self._alert_handler(
                f"{self.name}: {self._failure_threshold} failures within {self._window_seconds}s "
                f"(total passes: {self._total_passes}, total failures: {self._total_failures})"
            )

    @property
    def recent_failures(self) -> int:
        self._clean_old_failures()
        return len(self._failure_timestamps)

    @property
    def stats(self) -> dict:
        self._clean_old_failures()
        return {
            'name': self.name,
            'total_passes': self._total_passes,
            'total_failures': self._total_failures,
            'recent_failures': len(self._failure_timestamps),
            'last_status_time': int(self._last_status_time.timestamp()),
            'window_seconds': self._window_seconds
        }
