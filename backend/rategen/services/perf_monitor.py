"""Performance monitoring utilities for the rate generator."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict

logger = logging.getLogger("rategen.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def resolve(...):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "function": func.__qualname__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class ResolutionTracker:
    """
    Thread-safe in-memory counters for breakdown resolutions.

    Tracks:
    - Total resolutions run
    - Resolutions that did not settle within the round budget
    - Line errors broken down by error kind
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._resolutions: int = 0
        self._non_converged: int = 0
        self._line_errors: Dict[str, int] = {}

    def record_resolution(self, converged: bool, error_kinds) -> None:
        """Call once per completed resolution with the final per-line errors."""
        with self._lock:
            self._resolutions += 1
            if not converged:
                self._non_converged += 1
            for kind in error_kinds:
                if kind is None:
                    continue
                key = getattr(kind, "value", str(kind))
                self._line_errors[key] = self._line_errors.get(key, 0) + 1

    def get_metrics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "resolutions": self._resolutions,
                "non_converged": self._non_converged,
                "line_errors": dict(self._line_errors),
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._resolutions = 0
            self._non_converged = 0
            self._line_errors.clear()


# Module-level singleton; import this instance everywhere else.
tracker = ResolutionTracker()
