"""
数据存储模块

提供数据模型、数据库Schema定义和数据访问层接口。

使用示例:
    from alertflow.storage import Database, AlertRuleRepository, AlertRule

    # 初始化数据库
    db = Database("sqlite+aiosqlite:///./data/alertflow.db")
    await db.init()

    # 创建规则
    rules = AlertRuleRepository(db)
    await rules.create(AlertRule(metric="cpu", comparison="gt", threshold=85))

    # 关闭数据库连接
    await db.close()
"""

from .models import (
    ActionKind,
    ActionOutcome,
    Alert,
    AlertIntent,
    AlertRule,
    Comparison,
    Event,
    ExecutionResult,
    ExecutionState,
    OutcomeStatus,
    TelemetrySample,
    Workflow,
    WorkflowActionSpec,
    WorkflowCreate,
    WorkflowLogEntry,
)
from .repository import (
    AlertRepository,
    AlertRuleRepository,
    Database,
    DatabaseError,
    MetricSampleRepository,
    NotFoundError,
    WorkflowLogRepository,
    WorkflowRepository,
)
from .schema import Base, get_all_models

__all__ = [
    "ActionKind",
    "ActionOutcome",
    "Alert",
    "AlertIntent",
    "AlertRule",
    "Comparison",
    "Event",
    "ExecutionResult",
    "ExecutionState",
    "OutcomeStatus",
    "TelemetrySample",
    "Workflow",
    "WorkflowActionSpec",
    "WorkflowCreate",
    "WorkflowLogEntry",
    "Database",
    "DatabaseError",
    "NotFoundError",
    "MetricSampleRepository",
    "AlertRuleRepository",
    "AlertRepository",
    "WorkflowRepository",
    "WorkflowLogRepository",
    "Base",
    "get_all_models",
]
