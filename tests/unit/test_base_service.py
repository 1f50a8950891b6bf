"""Tests for BaseService operation timing and the Prometheus registry."""

import pytest

from clubspace.monitoring.prometheus_metrics import prometheus_metrics
from clubspace.services.base import BaseService


class ExampleService(BaseService):
    @BaseService.measure_operation("sync_op")
    def sync_op(self, fail=False):
        if fail:
            raise ValueError("nope")
        return "ok"

    @BaseService.measure_operation("async_op")
    async def async_op(self):
        return 42


class TestMeasureOperation:
    def test_sync_success_and_failure(self, settings):
        service = ExampleService(settings)

        assert service.sync_op() == "ok"
        with pytest.raises(ValueError):
            service.sync_op(fail=True)

        stats = service.get_metrics()["sync_op"]
        assert stats["count"] == 2
        assert stats["success_count"] == 1
        assert stats["failure_count"] == 1
        assert stats["success_rate"] == 0.5

    @pytest.mark.asyncio
    async def test_async(self, settings):
        service = ExampleService(settings)

        assert await service.async_op() == 42
        assert service.get_metrics()["async_op"]["count"] == 1

    def test_context_manager(self, settings):
        service = ExampleService(settings)

        with service.measure_operation_context("block"):
            pass

        assert service.get_metrics()["block"]["success_count"] == 1

    def test_slow_operation_is_logged(self, settings, caplog):
        slow = settings.model_copy(update={"slow_operation_threshold": 0.0})
        service = ExampleService(slow)

        with caplog.at_level("WARNING"):
            service.sync_op()

        assert "Slow operation detected: sync_op" in caplog.text

    def test_operations_are_exported(self, settings):
        ExampleService(settings).sync_op()

        body = prometheus_metrics.get_metrics().decode()

        assert 'service="ExampleService",operation="sync_op",status="success"' in body
