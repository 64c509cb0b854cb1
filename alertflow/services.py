"""
服务装配模块

按配置创建数据库、仓储、工作池、通知渠道、告警汇聚器和工作流引擎，
HTTP 服务、命令行和演示脚本共用同一套装配。

使用示例:
    async with AlertFlowServices(settings) as services:
        await services.ingest(sample)
        await services.pool.join()
"""

from typing import Optional

from loguru import logger

from .alerting.channels import build_channels
from .alerting.evaluator import RuleEvaluationService
from .alerting.sink import AlertSink, DedupStrategy, NoDedup, TimeWindowDedup
from .automation.actions import ActionExecutor
from .automation.engine import WorkflowEngine
from .config.settings import Settings
from .runtime.metrics import create_pipeline_metrics
from .runtime.queue import WorkerPool, WorkerPoolConfig
from .storage.models import TelemetrySample
from .storage.repository import (
    AlertRepository,
    AlertRuleRepository,
    Database,
    MetricSampleRepository,
    WorkflowLogRepository,
    WorkflowRepository,
)


class AlertFlowServices:
    """
    服务容器

    Attributes:
        settings: 应用配置
        db: 数据库
        metrics: 指标注册中心
        pool: 后台工作池
        sink: 告警汇聚器
        evaluator: 规则评估服务
        executor: 动作执行器
        engine: 工作流引擎
    """

    def __init__(self, settings: Settings, db: Optional[Database] = None):
        self.settings = settings
        self.db = db or Database(settings.database_url)
        self.metrics = create_pipeline_metrics()
        self.pool = WorkerPool(
            WorkerPoolConfig(worker_count=settings.worker_count, queue_size=settings.queue_size),
            self.metrics,
        )

        self.samples = MetricSampleRepository(self.db)
        self.rules = AlertRuleRepository(self.db)
        self.alerts = AlertRepository(self.db)
        self.workflows = WorkflowRepository(self.db)
        self.logs = WorkflowLogRepository(self.db)

        self.channels = build_channels(settings)
        self.executor = ActionExecutor(
            channels=self.channels,
            ticket_channel=self.channels.get("itsm"),
            timeout=settings.notification_timeout,
            metrics=self.metrics,
        )
        self.engine = WorkflowEngine(self.workflows, self.logs, self.executor, self.metrics)
        self.sink = AlertSink(
            alerts=self.alerts,
            channels=self.channels,
            pool=self.pool,
            dedup=self._build_dedup(settings),
            event_publisher=self.engine.submit if settings.synthesize_alert_events else None,
            notification_timeout=settings.notification_timeout,
            event_type=settings.alert_event_type,
            metrics=self.metrics,
        )
        self.evaluator = RuleEvaluationService(self.rules, self.sink, self.metrics)

    @staticmethod
    def _build_dedup(settings: Settings) -> DedupStrategy:
        if settings.dedup_window_seconds > 0:
            return TimeWindowDedup(settings.dedup_window_seconds)
        return NoDedup()

    async def start(self) -> None:
        """初始化数据库并启动工作池"""
        await self.db.init()
        await self.pool.start()
        logger.info(f"AlertFlow services started (database: {self.settings.database_url})")

    async def close(self) -> None:
        """停止工作池并释放资源"""
        await self.pool.stop()
        await self.sink.close()
        await self.db.close()
        logger.info("AlertFlow services stopped")

    async def ingest(self, sample: TelemetrySample) -> int:
        """
        接收遥测样本

        样本先持久化，规则评估作为后台任务提交，不等待其完成。

        Args:
            sample: 遥测样本

        Returns:
            样本行ID

        Raises:
            DatabaseError: 样本持久化失败
        """
        sample_id = await self.samples.create(sample)
        self.metrics.increment("samples_ingested_total")
        logger.debug(f"Sample {sample_id} from device {sample.device_id} stored")
        self.evaluator.dispatch(sample, self.pool)
        return sample_id

    async def __aenter__(self) -> "AlertFlowServices":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
