"""
运行时模块测试

测试后台工作池和指标注册中心。
"""

import asyncio

import pytest

from alertflow.runtime.metrics import MetricsRegistry, create_pipeline_metrics
from alertflow.runtime.queue import (
    QueueClosedError,
    QueueFullError,
    TaskStatus,
    WorkerPool,
    WorkerPoolConfig,
)


class TestWorkerPool:
    """工作池测试"""

    @pytest.mark.asyncio
    async def test_submit_and_join(self):
        done = []

        async def job(n: int) -> None:
            await asyncio.sleep(0.01)
            done.append(n)

        async with WorkerPool(WorkerPoolConfig(worker_count=3, queue_size=10)) as pool:
            tasks = [pool.submit(f"job-{n}", lambda n=n: job(n)) for n in range(5)]
            await pool.join()

        assert sorted(done) == [0, 1, 2, 3, 4]
        assert all(t.status == TaskStatus.COMPLETED for t in tasks)

    @pytest.mark.asyncio
    async def test_nested_submit_is_awaited_by_join(self):
        done = []

        async with WorkerPool(WorkerPoolConfig(worker_count=1, queue_size=10)) as pool:

            async def child() -> None:
                done.append("child")

            async def parent() -> None:
                pool.submit("child", child)
                done.append("parent")

            pool.submit("parent", parent)
            await pool.join()

            assert done == ["parent", "child"]

    @pytest.mark.asyncio
    async def test_failing_task_is_isolated(self):
        metrics = MetricsRegistry()
        done = []

        async def boom() -> None:
            raise RuntimeError("boom")

        async def fine() -> None:
            done.append(True)

        async with WorkerPool(WorkerPoolConfig(worker_count=1, queue_size=10), metrics) as pool:
            failed = pool.submit("boom", boom)
            pool.submit("fine", fine)
            await pool.join()

        assert failed.status == TaskStatus.FAILED
        assert failed.error == "boom"
        assert done == [True]
        assert metrics.get_value("tasks_total", result="failed") == 1

    @pytest.mark.asyncio
    async def test_full_queue_rejects(self):
        """测试队列满时立即拒绝"""
        release = asyncio.Event()
        metrics = MetricsRegistry()
        pool = WorkerPool(WorkerPoolConfig(worker_count=1, queue_size=1), metrics)
        await pool.start()
        try:
            pool.submit("running", release.wait)
            await asyncio.sleep(0.01)
            pool.submit("queued", release.wait)

            with pytest.raises(QueueFullError):
                pool.submit("rejected", release.wait)
            assert metrics.get_value("tasks_total", result="rejected") == 1
            assert pool.depth == 1
        finally:
            release.set()
            await pool.stop()

    def test_submit_before_start(self):
        pool = WorkerPool()
        with pytest.raises(QueueClosedError):
            pool.submit("never", asyncio.sleep)

    @pytest.mark.asyncio
    async def test_stop_unregisters_depth_gauge(self):
        metrics = MetricsRegistry()
        pool = WorkerPool(metrics=metrics)
        await pool.start()
        assert "queue_depth" in metrics.get_metric_names()

        await pool.stop()
        assert not pool.is_running
        assert "queue_depth" not in metrics.get_metric_names()


class TestMetricsRegistry:
    """指标注册中心测试"""

    def test_counters_with_labels(self):
        registry = MetricsRegistry()
        registry.increment("notifications_total", channel="email", result="sent")
        registry.increment("notifications_total", channel="email", result="sent")
        registry.increment("notifications_total", channel="sms", result="failed")

        assert registry.get_value("notifications_total", channel="email", result="sent") == 2
        assert registry.get_value("notifications_total", result="sent", channel="email") == 2
        assert registry.total("notifications_total") == 3
        assert registry.get_value("missing") == 0

    def test_gauge_and_collector(self):
        registry = MetricsRegistry(prefix="app")
        registry.set_gauge("workers", 4)
        registry.register("depth", lambda: 7)

        assert registry.get_value("workers") == 4
        assert registry.get_value("depth") == 7
        assert registry.get_metric_names() == ["app_depth", "app_workers"]

    def test_export_prometheus(self):
        registry = create_pipeline_metrics()
        registry.increment("alerts_raised_total", metric="cpu")

        text = registry.export_prometheus()

        assert "# HELP alertflow_alerts_raised_total Alerts persisted" in text
        assert "# TYPE alertflow_alerts_raised_total counter" in text
        assert 'alertflow_alerts_raised_total{metric="cpu"} 1' in text

    def test_broken_collector_is_skipped(self):
        registry = MetricsRegistry()

        def broken() -> int:
            raise RuntimeError("gone")

        registry.register("broken", broken)
        registry.increment("ok")

        assert [m.name for m in registry.get_all()] == ["ok"]
