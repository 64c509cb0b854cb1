"""
数据库Schema定义模块

使用SQLAlchemy定义所有数据库表结构，包括：
- 指标样本表 (metric_samples)
- 告警规则表 (alert_rules)
- 告警表 (alerts)
- 工作流表 (workflows)
- 工作流动作表 (workflow_actions)
- 工作流审计日志表 (workflow_logs)
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from .models import (
    ActionOutcome,
    Alert,
    AlertIntent,
    AlertRule,
    Comparison,
    Workflow,
    WorkflowActionSpec,
    WorkflowLogEntry,
)


class Base(AsyncAttrs, DeclarativeBase):
    """SQLAlchemy基类，支持异步属性加载"""

    pass


class MetricSampleORM(Base):
    """指标样本表

    保存采集代理上报的原始样本，规则评估之前写入。
    """

    __tablename__ = "metric_samples"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    metrics: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_metric_samples_device_ts", "device_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<MetricSample(device_id={self.device_id}, timestamp={self.timestamp})>"


class AlertRuleORM(Base):
    """告警规则表"""

    __tablename__ = "alert_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    metric: Mapped[str] = mapped_column(String(128), nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    comparison: Mapped[str] = mapped_column(String(8), nullable=False)
    channel: Mapped[str] = mapped_column(String(64), default="email", nullable=False)
    suggestion: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_alert_rules_metric", "metric"),
    )

    def to_pydantic(self) -> AlertRule:
        """转换为 Pydantic 模型"""
        return AlertRule(
            id=self.id,
            metric=self.metric,
            comparison=Comparison(self.comparison),
            threshold=self.threshold,
            channel=self.channel,
            suggestion=self.suggestion,
            description=self.description,
            created_at=self.created_at,
        )

    @classmethod
    def from_pydantic(cls, rule: AlertRule) -> "AlertRuleORM":
        """从 Pydantic 模型创建 ORM 实例"""
        return cls(
            metric=rule.metric,
            threshold=rule.threshold,
            comparison=rule.comparison.value,
            channel=rule.channel,
            suggestion=rule.suggestion,
            description=rule.description,
        )

    def __repr__(self) -> str:
        return f"<AlertRule(id={self.id}, metric={self.metric}, {self.comparison} {self.threshold})>"


class AlertORM(Base):
    """告警表

    每次阈值突破对应一行，写入后不再修改。
    """

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)
    metric: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    rule_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("alert_rules.id", ondelete="SET NULL")
    )
    suggestion: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_alerts_device_id", "device_id"),
        Index("idx_alerts_created_at", "created_at"),
        Index("idx_alerts_device_metric", "device_id", "metric"),
    )

    def to_pydantic(self) -> Alert:
        return Alert(
            id=self.id,
            device_id=self.device_id,
            metric=self.metric,
            value=self.value,
            threshold=self.threshold,
            rule_id=self.rule_id,
            suggestion=self.suggestion,
            description=self.description,
            created_at=self.created_at,
        )

    @classmethod
    def from_intent(cls, intent: AlertIntent) -> "AlertORM":
        return cls(
            device_id=intent.device_id,
            metric=intent.metric,
            value=intent.value,
            threshold=intent.threshold,
            rule_id=intent.rule_id,
            suggestion=intent.suggestion,
            description=intent.description,
        )

    def __repr__(self) -> str:
        return f"<Alert(id={self.id}, device_id={self.device_id}, metric={self.metric})>"


class WorkflowORM(Base):
    """工作流表"""

    __tablename__ = "workflows"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    conditions: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )

    actions: Mapped[list["WorkflowActionORM"]] = relationship(
        "WorkflowActionORM",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowActionORM.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_workflows_event_type", "event_type"),
    )

    def to_pydantic(self) -> Workflow:
        return Workflow(
            id=self.id,
            name=self.name,
            event_type=self.event_type,
            conditions=self.conditions,
            actions=[
                WorkflowActionSpec(action_type=a.action_type, parameters=a.parameters or {})
                for a in self.actions
            ],
            created_at=self.created_at,
        )

    def __repr__(self) -> str:
        return f"<Workflow(id={self.id}, name={self.name}, event_type={self.event_type})>"


class WorkflowActionORM(Base):
    """工作流动作表

    归属于单个工作流，随工作流级联删除，按 position 顺序执行。
    """

    __tablename__ = "workflow_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    parameters: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)

    workflow: Mapped["WorkflowORM"] = relationship("WorkflowORM", back_populates="actions")

    __table_args__ = (
        Index("idx_workflow_actions_workflow_position", "workflow_id", "position"),
    )

    def __repr__(self) -> str:
        return f"<WorkflowAction(workflow_id={self.workflow_id}, position={self.position}, type={self.action_type})>"


class WorkflowLogORM(Base):
    """工作流审计日志表

    只追加。工作流删除后 workflow_id 置空，日志保留。
    """

    __tablename__ = "workflow_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("workflows.id", ondelete="SET NULL")
    )
    event_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    result: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON)
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_workflow_logs_executed_at", "executed_at"),
        Index("idx_workflow_logs_workflow_id", "workflow_id"),
    )

    def to_pydantic(self) -> WorkflowLogEntry:
        return WorkflowLogEntry(
            id=self.id,
            workflow_id=self.workflow_id,
            event_data=self.event_data or {},
            result=[ActionOutcome(**item) for item in (self.result or [])],
            executed_at=self.executed_at,
        )

    def __repr__(self) -> str:
        return f"<WorkflowLog(id={self.id}, workflow_id={self.workflow_id})>"


def get_all_models() -> list[type[Base]]:
    """获取所有模型类列表"""
    return [
        MetricSampleORM,
        AlertRuleORM,
        AlertORM,
        WorkflowORM,
        WorkflowActionORM,
        WorkflowLogORM,
    ]
