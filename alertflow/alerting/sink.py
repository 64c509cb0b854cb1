"""
告警汇聚模块

告警意图在这里持久化，然后在后台并发地分发到所有通知渠道，
并转换为工作流事件。调用方只等待持久化完成。

使用示例:
    sink = AlertSink(
        alerts=AlertRepository(db),
        channels=build_channels(settings),
        pool=pool,
        event_publisher=engine.submit,
    )
    alert_id = await sink.raise_alert(intent)
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, Hashable, Mapping, Optional, Tuple

from loguru import logger

from ..runtime.metrics import MetricsRegistry
from ..runtime.queue import QueueError, TaskFactory, WorkerPool
from ..storage.models import Alert, AlertIntent, Event
from ..storage.repository import AlertRepository
from .channels import Notification, NotificationChannel

EventPublisher = Callable[[Event], Awaitable[object]]


class DedupStrategy(ABC):
    """告警去重策略抽象基类"""

    @abstractmethod
    def should_persist(self, intent: AlertIntent) -> bool:
        """返回 False 表示该意图被抑制"""
        pass

    def record(self, intent: AlertIntent) -> None:
        """告警写入成功后调用"""
        pass


class NoDedup(DedupStrategy):
    """不去重，每次突破都产生告警"""

    def should_persist(self, intent: AlertIntent) -> bool:
        return True


class TimeWindowDedup(DedupStrategy):
    """
    时间窗口去重

    同一设备、指标和规则在窗口内只保留第一条成功写入的告警。

    Attributes:
        window_seconds: 窗口长度（秒）
    """

    def __init__(self, window_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self._clock = clock
        self._last_seen: Dict[Hashable, float] = {}

    @staticmethod
    def key_of(intent: AlertIntent) -> Tuple[str, str, Optional[int]]:
        return (intent.device_id, intent.metric, intent.rule_id)

    def should_persist(self, intent: AlertIntent) -> bool:
        now = self._clock()
        self._prune(now)

        key = self.key_of(intent)
        last = self._last_seen.get(key)
        return last is None or now - last >= self.window_seconds

    def record(self, intent: AlertIntent) -> None:
        self._last_seen[self.key_of(intent)] = self._clock()

    def _prune(self, now: float) -> None:
        expired = [k for k, seen in self._last_seen.items() if now - seen >= self.window_seconds]
        for key in expired:
            del self._last_seen[key]


class AlertSink:
    """
    告警汇聚器

    raise_alert 在告警写入数据库后立即返回；通知分发和事件转发作为
    后台任务提交到工作池。单个渠道的失败或超时只记录日志，不影响
    其他渠道，也不影响已持久化的告警。

    Attributes:
        alerts: 告警仓储
        channels: 通知渠道
        pool: 后台工作池
        dedup: 去重策略
        event_publisher: 告警事件的接收方（通常是工作流引擎）
        notification_timeout: 单个渠道的超时（秒）
        event_type: 合成事件的类型
    """

    def __init__(
        self,
        alerts: AlertRepository,
        channels: Mapping[str, NotificationChannel],
        pool: WorkerPool,
        dedup: Optional[DedupStrategy] = None,
        event_publisher: Optional[EventPublisher] = None,
        notification_timeout: float = 10.0,
        event_type: str = "alert.raised",
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.alerts = alerts
        self.channels = dict(channels)
        self.pool = pool
        self.dedup = dedup or NoDedup()
        self.event_publisher = event_publisher
        self.notification_timeout = notification_timeout
        self.event_type = event_type
        self.metrics = metrics or MetricsRegistry()

    async def raise_alert(self, intent: AlertIntent) -> Optional[int]:
        """
        提交告警

        Args:
            intent: 告警意图

        Returns:
            告警ID；被去重策略抑制时返回 None

        Raises:
            DatabaseError: 告警持久化失败
        """
        if not self.dedup.should_persist(intent):
            self.metrics.increment("alerts_suppressed_total", metric=intent.metric)
            logger.info(
                f"Alert suppressed for device {intent.device_id} metric {intent.metric}"
            )
            return None

        alert = await self.alerts.create(intent)
        self.dedup.record(intent)
        self.metrics.increment("alerts_raised_total", metric=alert.metric)
        logger.info(
            f"Alert {alert.id} raised: device {alert.device_id} "
            f"{alert.metric}={alert.value} (threshold {alert.threshold})"
        )

        self._schedule(f"notify:alert-{alert.id}", lambda: self.fan_out(alert, intent.channel))
        if self.event_publisher is not None:
            event = self.to_event(alert)
            self._schedule(f"event:alert-{alert.id}", lambda: self.event_publisher(event))

        return alert.id

    def to_event(self, alert: Alert) -> Event:
        """把告警转换为工作流事件"""
        return Event(
            event_type=self.event_type,
            device_id=alert.device_id,
            alert_id=alert.id,
            metric=alert.metric,
            value=alert.value,
            threshold=alert.threshold,
            rule_id=alert.rule_id,
            suggestion=alert.suggestion,
            description=alert.description,
        )

    async def fan_out(self, alert: Alert, channel: Optional[str] = None) -> Dict[str, bool]:
        """
        并发分发到所有已配置渠道

        Args:
            alert: 告警
            channel: 规则指定的渠道名称，随负载发送

        Returns:
            渠道名称到发送结果的映射
        """
        notification = Notification.from_alert(alert, channel)
        targets = [c for c in self.channels.values() if c.is_configured()]
        results = await asyncio.gather(*(self._deliver(c, notification) for c in targets))
        return {target.name: ok for target, ok in zip(targets, results)}

    async def _deliver(self, channel: NotificationChannel, notification: Notification) -> bool:
        try:
            ok = await asyncio.wait_for(channel.send(notification), self.notification_timeout)
        except asyncio.TimeoutError:
            self.metrics.increment("notifications_total", channel=channel.name, result="timeout")
            logger.warning(
                f"Notification via '{channel.name}' timed out after {self.notification_timeout}s"
            )
            return False
        except Exception as e:
            self.metrics.increment("notifications_total", channel=channel.name, result="failed")
            logger.warning(f"Notification via '{channel.name}' failed: {e!r}")
            return False

        result = "sent" if ok else "failed"
        self.metrics.increment("notifications_total", channel=channel.name, result=result)
        if not ok:
            logger.warning(f"Notification via '{channel.name}' was not delivered")
        return ok

    def _schedule(self, name: str, factory: TaskFactory) -> None:
        try:
            self.pool.submit(name, factory)
        except QueueError as e:
            self.metrics.increment("tasks_dropped_total", task=name.split(":", 1)[0])
            logger.warning(f"Background task {name} dropped: {e}")

    async def close(self) -> None:
        """关闭所有渠道"""
        for channel in self.channels.values():
            await channel.close()
