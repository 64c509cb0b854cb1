"""
AlertFlow - 设备遥测告警与工作流自动化服务

提供阈值告警、通知分发和事件驱动的工作流执行。
"""

from .storage.models import (
    ActionOutcome,
    AlertIntent,
    AlertRule,
    Event,
    TelemetrySample,
    Workflow,
)

__version__ = "0.1.0"

__all__ = [
    "ActionOutcome",
    "AlertIntent",
    "AlertRule",
    "Event",
    "TelemetrySample",
    "Workflow",
]
