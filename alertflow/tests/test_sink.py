"""
告警汇聚器测试

验证持久化先于分发、渠道故障隔离、超时以及告警到事件的转换。
"""

import asyncio
from typing import List

import pytest
import pytest_asyncio

from alertflow.alerting.sink import AlertSink, NoDedup, TimeWindowDedup
from alertflow.runtime.metrics import MetricsRegistry
from alertflow.runtime.queue import WorkerPool, WorkerPoolConfig
from alertflow.storage.models import AlertIntent, Event
from alertflow.storage.repository import AlertRepository, Database, DatabaseError
from conftest import RecordingChannel


@pytest.fixture
def intent() -> AlertIntent:
    return AlertIntent(
        device_id="srv-01",
        metric="cpu",
        value=97.0,
        threshold=85.0,
        rule_id=None,
        suggestion="Investigate high CPU usage by reviewing running processes and workloads.",
        description="Metric cpu gt threshold 85",
        channel="email",
    )


@pytest_asyncio.fixture
async def pool():
    worker_pool = WorkerPool(WorkerPoolConfig(worker_count=2, queue_size=16))
    await worker_pool.start()
    yield worker_pool
    await worker_pool.stop(drain=False)


class TestDedup:
    """去重策略测试"""

    def test_no_dedup(self, intent: AlertIntent):
        dedup = NoDedup()
        assert dedup.should_persist(intent)
        assert dedup.should_persist(intent)

    def test_time_window(self, intent: AlertIntent):
        now = [100.0]
        dedup = TimeWindowDedup(60, clock=lambda: now[0])

        assert dedup.should_persist(intent) is True
        dedup.record(intent)
        now[0] = 130.0
        assert dedup.should_persist(intent) is False

        other = intent.model_copy(update={"device_id": "srv-02"})
        assert dedup.should_persist(other) is True

        now[0] = 161.0
        assert dedup.should_persist(intent) is True

    def test_time_window_check_does_not_record(self, intent: AlertIntent):
        """测试仅检查不会占用窗口"""
        dedup = TimeWindowDedup(60, clock=lambda: 100.0)

        assert dedup.should_persist(intent) is True
        assert dedup.should_persist(intent) is True


class TestAlertSink:
    """告警汇聚器测试"""

    @pytest.mark.asyncio
    async def test_persist_then_fan_out(self, test_db: Database, pool: WorkerPool, intent: AlertIntent):
        """测试持久化后分发到所有渠道"""
        email = RecordingChannel("email")
        sms = RecordingChannel("sms")
        metrics = MetricsRegistry()
        repo = AlertRepository(test_db)
        sink = AlertSink(repo, {"email": email, "sms": sms}, pool, metrics=metrics)

        alert_id = await sink.raise_alert(intent)
        assert alert_id is not None
        assert (await repo.get_by_id(alert_id)).metric == "cpu"

        await pool.join()
        assert len(email.sent) == 1
        assert len(sms.sent) == 1
        assert email.sent[0].payload["id"] == alert_id
        assert metrics.get_value("notifications_total", channel="email", result="sent") == 1

    @pytest.mark.asyncio
    async def test_failing_channel_does_not_block_others(
        self, test_db: Database, pool: WorkerPool, intent: AlertIntent
    ):
        """测试单个渠道故障隔离"""
        broken = RecordingChannel("email", error=ConnectionError("smtp down"))
        rejecting = RecordingChannel("itsm", result=False)
        healthy = RecordingChannel("sms")
        metrics = MetricsRegistry()
        sink = AlertSink(
            AlertRepository(test_db),
            {"email": broken, "itsm": rejecting, "sms": healthy},
            pool,
            metrics=metrics,
        )

        alert_id = await sink.raise_alert(intent)
        await pool.join()

        assert alert_id is not None
        assert len(healthy.sent) == 1
        assert metrics.get_value("notifications_total", channel="email", result="failed") == 1
        assert metrics.get_value("notifications_total", channel="itsm", result="failed") == 1

    @pytest.mark.asyncio
    async def test_raise_returns_before_slow_channel(
        self, test_db: Database, pool: WorkerPool, intent: AlertIntent
    ):
        """测试调用方不等待慢渠道"""
        slow = RecordingChannel("email", delay=0.5)
        sink = AlertSink(AlertRepository(test_db), {"email": slow}, pool, notification_timeout=2)

        alert_id = await sink.raise_alert(intent)
        assert alert_id is not None
        assert slow.sent == []

        await pool.join()
        assert len(slow.sent) == 1

    @pytest.mark.asyncio
    async def test_channel_timeout(self, test_db: Database, pool: WorkerPool, intent: AlertIntent):
        hung = RecordingChannel("sms", delay=5)
        fast = RecordingChannel("email")
        metrics = MetricsRegistry()
        sink = AlertSink(
            AlertRepository(test_db),
            {"sms": hung, "email": fast},
            pool,
            notification_timeout=0.05,
            metrics=metrics,
        )

        await sink.raise_alert(intent)
        await pool.join()

        assert len(fast.sent) == 1
        assert hung.sent == []
        assert metrics.get_value("notifications_total", channel="sms", result="timeout") == 1

    @pytest.mark.asyncio
    async def test_alert_synthesizes_event(
        self, test_db: Database, pool: WorkerPool, intent: AlertIntent
    ):
        """测试告警转换为工作流事件"""
        published: List[Event] = []

        async def publisher(event: Event) -> None:
            published.append(event)

        sink = AlertSink(
            AlertRepository(test_db),
            {},
            pool,
            event_publisher=publisher,
            event_type="alert.raised",
        )

        alert_id = await sink.raise_alert(intent)
        await pool.join()

        assert len(published) == 1
        payload = published[0].payload()
        assert payload["event_type"] == "alert.raised"
        assert payload["device_id"] == "srv-01"
        assert payload["alert_id"] == alert_id
        assert payload["metric"] == "cpu"
        assert payload["value"] == 97.0

    @pytest.mark.asyncio
    async def test_suppressed_intent_is_not_persisted(
        self, test_db: Database, pool: WorkerPool, intent: AlertIntent
    ):
        repo = AlertRepository(test_db)
        metrics = MetricsRegistry()
        channel = RecordingChannel("email")
        sink = AlertSink(
            repo, {"email": channel}, pool, dedup=TimeWindowDedup(300), metrics=metrics
        )

        first = await sink.raise_alert(intent)
        second = await sink.raise_alert(intent)
        await pool.join()

        assert first is not None
        assert second is None
        assert await repo.count_alerts() == 1
        assert len(channel.sent) == 1
        assert metrics.get_value("alerts_suppressed_total", metric="cpu") == 1

    @pytest.mark.asyncio
    async def test_failed_persist_does_not_suppress_retry(
        self, test_db: Database, pool: WorkerPool, intent: AlertIntent
    ):
        """测试持久化失败后同一突破仍可写入"""
        repo = AlertRepository(test_db)
        create = repo.create
        failures = [DatabaseError("database is locked")]

        async def create_once_failing(alert_intent: AlertIntent):
            if failures:
                raise failures.pop()
            return await create(alert_intent)

        repo.create = create_once_failing
        sink = AlertSink(repo, {}, pool, dedup=TimeWindowDedup(300))

        with pytest.raises(DatabaseError):
            await sink.raise_alert(intent)

        alert_id = await sink.raise_alert(intent)
        await pool.join()

        assert alert_id is not None
        assert await repo.count_alerts() == 1

    @pytest.mark.asyncio
    async def test_full_queue_still_returns_alert(self, test_db: Database, intent: AlertIntent):
        """测试队列满时告警仍已持久化"""
        blocker = asyncio.Event()
        metrics = MetricsRegistry()
        small_pool = WorkerPool(WorkerPoolConfig(worker_count=1, queue_size=1), metrics)
        await small_pool.start()
        try:
            small_pool.submit("blocker", blocker.wait)
            await asyncio.sleep(0.01)
            small_pool.submit("filler", blocker.wait)

            sink = AlertSink(AlertRepository(test_db), {"email": RecordingChannel()}, small_pool, metrics=metrics)
            alert_id = await sink.raise_alert(intent)

            assert alert_id is not None
            assert metrics.get_value("tasks_dropped_total", task="notify") == 1
        finally:
            blocker.set()
            await small_pool.stop()

    @pytest.mark.asyncio
    async def test_fan_out_direct(self, test_db: Database, pool: WorkerPool, intent: AlertIntent):
        ok = RecordingChannel("email")
        bad = RecordingChannel("sms", result=False)
        sink = AlertSink(AlertRepository(test_db), {"email": ok, "sms": bad}, pool)
        alert = await AlertRepository(test_db).create(intent)

        results = await sink.fan_out(alert, "email")
        assert results == {"email": True, "sms": False}
        assert ok.sent[0].payload["channel"] == "email"
