# clubspace/services/base.py
"""
Base Service Pattern for the ClubSpace messaging client

Provides common functionality for service classes:
- Logging
- Performance monitoring via ``measure_operation``
"""

import asyncio
from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, cast

from ..core.config import Settings, settings as default_settings
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    """
    Base class for service layer components.

    Subclasses get a class-named logger and per-operation timing stats that
    ``get_metrics`` reports and ``measure_operation`` feeds.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or default_settings
        self.logger = logging.getLogger(self.__class__.__name__)
        self._metrics: Dict[str, Dict[str, Any]] = {}

    def _record_metric(self, operation: str, elapsed: float, success: bool) -> None:
        stats = self._metrics.setdefault(
            operation,
            {"count": 0, "total_time": 0.0, "success_count": 0, "failure_count": 0},
        )
        stats["count"] += 1
        stats["total_time"] += elapsed
        if success:
            stats["success_count"] += 1
        else:
            stats["failure_count"] += 1

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation counts and average durations for this instance."""
        report: Dict[str, Dict[str, Any]] = {}
        for operation, stats in self._metrics.items():
            count = stats["count"]
            report[operation] = {
                **stats,
                "avg_time": stats["total_time"] / count if count else 0.0,
                "success_rate": stats["success_count"] / count if count else 0.0,
            }
        return report

    def _finish_operation(
        self, operation_name: str, elapsed: float, success: bool, error_type: Optional[str]
    ) -> None:
        self._record_metric(operation_name, elapsed, success)

        if elapsed > self.settings.slow_operation_threshold:
            self.logger.warning(f"Slow operation detected: {operation_name} took {elapsed:.2f}s")

        prometheus_metrics.record_service_operation(
            service=self.__class__.__name__,
            operation=operation_name,
            duration=elapsed,
            status="success" if success else "error",
            error_type=error_type,
        )

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("send_message")
            async def send_message(self, ...):
                ...

        Works on both sync and async methods.
        """

        def decorator(func: F) -> F:
            if not asyncio.iscoroutinefunction(func):

                @wraps(func)
                def wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                    start_time = time.perf_counter()
                    error_type = None
                    try:
                        return func(self, *args, **kwargs)
                    except Exception as e:
                        error_type = type(e).__name__
                        raise
                    finally:
                        self._finish_operation(
                            operation_name,
                            time.perf_counter() - start_time,
                            error_type is None,
                            error_type,
                        )

                return cast(F, wrapper)

            @wraps(func)
            async def async_wrapper(self: "BaseService", *args: Any, **kwargs: Any) -> Any:
                start_time = time.perf_counter()
                error_type = None
                try:
                    return await func(self, *args, **kwargs)
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    self._finish_operation(
                        operation_name,
                        time.perf_counter() - start_time,
                        error_type is None,
                        error_type,
                    )

            return cast(F, async_wrapper)

        return decorator

    @contextmanager
    def measure_operation_context(self, operation_name: str) -> Iterator[None]:
        """
        Context manager to measure operation performance.

        Usage:
            with self.measure_operation_context("resolve_inbox"):
                ...
        """
        start_time = time.perf_counter()
        error_type = None
        try:
            yield
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            self._finish_operation(
                operation_name, time.perf_counter() - start_time, error_type is None, error_type
            )
