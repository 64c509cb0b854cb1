"""
运行时模块

提供有界后台工作池和流水线运行指标。
"""

from .metrics import MetricsRegistry, MetricValue, create_pipeline_metrics
from .queue import (
    QueueClosedError,
    QueueError,
    QueueFullError,
    Task,
    TaskStatus,
    WorkerPool,
    WorkerPoolConfig,
)

__all__ = [
    "MetricsRegistry",
    "MetricValue",
    "create_pipeline_metrics",
    "QueueClosedError",
    "QueueError",
    "QueueFullError",
    "Task",
    "TaskStatus",
    "WorkerPool",
    "WorkerPoolConfig",
]
