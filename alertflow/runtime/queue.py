"""
后台任务队列模块

提供有界的进程内工作池，用于"提交即返回"的后台任务：
规则评估、通知分发、告警事件转发。队列容量有限，满时拒绝新任务，
任务的成功或失败只通过日志和指标观察，不回传给提交方。

使用示例:
    from alertflow.runtime.queue import WorkerPool, WorkerPoolConfig

    pool = WorkerPool(WorkerPoolConfig(worker_count=4, queue_size=1000))
    await pool.start()

    pool.submit("evaluate:device-1", lambda: evaluator.run(sample))

    await pool.stop()
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from pydantic import BaseModel, Field

from .metrics import MetricsRegistry

TaskFactory = Callable[[], Awaitable[Any]]


class WorkerPoolConfig(BaseModel):
    """
    工作池配置类

    Attributes:
        worker_count: 工作协程数
        queue_size: 队列容量
        name: 工作池名称，用于日志
    """

    worker_count: int = Field(default=4, ge=1, le=64, description="工作协程数")
    queue_size: int = Field(default=1000, ge=1, description="队列容量")
    name: str = Field(default="alertflow", description="工作池名称")

    class Config:
        json_schema_extra = {
            "example": {
                "worker_count": 4,
                "queue_size": 1000,
                "name": "alertflow",
            }
        }


class TaskStatus(str, Enum):
    """任务状态枚举"""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Task:
    """
    后台任务

    Attributes:
        name: 任务名称
        factory: 创建协程的函数，在工作协程中调用
        id: 任务ID
        status: 任务状态
        submitted_at: 提交时间
        error: 失败原因
    """

    name: str
    factory: TaskFactory
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    error: Optional[str] = None


class QueueError(Exception):
    """工作池异常基类"""

    pass


class QueueFullError(QueueError):
    """队列已满"""

    pass


class QueueClosedError(QueueError):
    """工作池未运行"""

    pass


class WorkerPool:
    """
    有界工作池

    固定数量的工作协程从有界队列取任务执行。submit 从不阻塞：
    队列满时抛出 QueueFullError，由调用方决定如何记录丢弃。
    """

    def __init__(
        self,
        config: Optional[WorkerPoolConfig] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self.config = config or WorkerPoolConfig()
        self.metrics = metrics or MetricsRegistry()
        self._queue: Optional[asyncio.Queue[Task]] = None
        self._workers: list[asyncio.Task] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def depth(self) -> int:
        """当前排队任务数"""
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """启动工作协程"""
        if self._running:
            return

        self._queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"{self.config.name}-worker-{index}")
            for index in range(self.config.worker_count)
        ]
        self._running = True
        self.metrics.register("queue_depth", lambda: self.depth)
        logger.info(
            f"Worker pool '{self.config.name}' started with "
            f"{self.config.worker_count} workers (capacity {self.config.queue_size})"
        )

    def submit(self, name: str, factory: TaskFactory) -> Task:
        """
        提交任务

        Args:
            name: 任务名称
            factory: 创建协程的函数

        Returns:
            已入队的任务

        Raises:
            QueueClosedError: 工作池未运行
            QueueFullError: 队列已满
        """
        if not self._running or self._queue is None:
            raise QueueClosedError(f"Worker pool '{self.config.name}' is not running")

        task = Task(name=name, factory=factory)
        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            self.metrics.increment("tasks_total", result="rejected")
            raise QueueFullError(
                f"Worker pool '{self.config.name}' queue is full ({self.config.queue_size})"
            ) from None

        self.metrics.increment("tasks_total", result="submitted")
        return task

    async def join(self) -> None:
        """等待队列中所有任务完成（包括执行期间新提交的任务）"""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, drain: bool = True) -> None:
        """
        停止工作池

        Args:
            drain: 是否先等待已排队任务完成
        """
        if not self._running:
            return

        if drain:
            await self.join()

        self._running = False
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self.metrics.unregister("queue_depth")
        logger.info(f"Worker pool '{self.config.name}' stopped")

    async def _worker(self) -> None:
        assert self._queue is not None
        while True:
            task = await self._queue.get()
            try:
                task.status = TaskStatus.RUNNING
                await task.factory()
                task.status = TaskStatus.COMPLETED
                self.metrics.increment("tasks_total", result="completed")
            except Exception as e:
                task.status = TaskStatus.FAILED
                task.error = str(e)
                self.metrics.increment("tasks_total", result="failed")
                logger.error(f"Background task {task.name} ({task.id}) failed: {e!r}")
            finally:
                self._queue.task_done()

    async def __aenter__(self) -> "WorkerPool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()
