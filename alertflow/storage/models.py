"""
Pydantic 数据模型定义

包含遥测样本、告警规则、告警、事件、工作流及执行结果的数据模型，
用于边界校验和序列化。
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    """当前 UTC 时间"""
    return datetime.now(timezone.utc)


class Comparison(str, Enum):
    """阈值比较方式枚举"""

    GT = "gt"
    LT = "lt"


class ActionKind(str, Enum):
    """工作流动作类型枚举"""

    RUN_SCRIPT = "run_script"
    RESTART_SERVICE = "restart_service"
    ISOLATE_DEVICE = "isolate_device"
    NOTIFY = "notify"
    SEND_NOTIFICATION = "send_notification"
    CREATE_TICKET = "create_ticket"


class OutcomeStatus(str, Enum):
    """动作执行结果状态"""

    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN = "unknown"


class ExecutionState(str, Enum):
    """工作流执行状态"""

    RECEIVED = "received"
    CONDITIONS_EVALUATED = "conditions-evaluated"
    SKIPPED = "skipped"
    ACTIONS_RUNNING = "actions-running"
    COMPLETED = "completed"


class TelemetrySample(BaseModel):
    """
    遥测样本数据模型

    由采集代理周期上报，指标值可以缺失（null）。样本不要求按时间顺序到达。

    Attributes:
        device_id: 设备标识符
        timestamp: 采样时间
        metrics: 指标名称到数值的映射
    """

    model_config = ConfigDict(frozen=True)

    device_id: str = Field(..., min_length=1, max_length=64, description="设备标识符")
    timestamp: datetime = Field(..., description="采样时间")
    metrics: dict[str, Optional[float]] = Field(..., description="指标名称到数值的映射")

    @field_validator("device_id", mode="before")
    @classmethod
    def strip_device_id(cls, v: Any) -> Any:
        """去除首尾空白"""
        if isinstance(v, str):
            return v.strip()
        return v

    def value_of(self, metric: str) -> Optional[float]:
        """获取指标值，缺失时返回 None"""
        return self.metrics.get(metric)


class AlertRule(BaseModel):
    """
    告警阈值规则

    Attributes:
        id: 规则ID（持久化后分配）
        metric: 指标名称
        comparison: 比较方式（gt 或 lt）
        threshold: 阈值
        channel: 通知渠道名称
        suggestion: 建议的处理措施
        description: 规则描述
        created_at: 创建时间
    """

    id: Optional[int] = Field(None, description="规则ID")
    metric: str = Field(..., min_length=1, max_length=128, description="指标名称")
    comparison: Comparison = Field(..., description="比较方式")
    threshold: float = Field(..., description="阈值")
    channel: str = Field(default="email", max_length=64, description="通知渠道名称")
    suggestion: Optional[str] = Field(None, description="建议的处理措施")
    description: Optional[str] = Field(None, description="规则描述")
    created_at: Optional[datetime] = Field(None, description="创建时间")

    @field_validator("metric", mode="before")
    @classmethod
    def strip_metric(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("comparison", mode="before")
    @classmethod
    def normalize_comparison(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("suggestion", "description", mode="before")
    @classmethod
    def empty_to_none(cls, v: Any) -> Optional[str]:
        """空字符串视为未设置"""
        if v is None:
            return None
        if isinstance(v, str):
            return v.strip() or None
        return str(v)

    class Config:
        json_schema_extra = {
            "example": {
                "metric": "cpu",
                "comparison": "gt",
                "threshold": 85,
                "channel": "email",
                "suggestion": "Check runaway processes",
                "description": "CPU above 85%",
            }
        }


class AlertIntent(BaseModel):
    """
    告警意图

    检测到阈值突破后、尚未持久化的告警描述。

    Attributes:
        device_id: 设备标识符
        metric: 指标名称
        value: 观测值
        threshold: 阈值
        rule_id: 来源规则ID
        suggestion: 建议的处理措施
        description: 描述
        channel: 规则指定的通知渠道
    """

    device_id: str = Field(..., min_length=1, max_length=64, description="设备标识符")
    metric: str = Field(..., min_length=1, max_length=128, description="指标名称")
    value: float = Field(..., description="观测值")
    threshold: float = Field(..., description="阈值")
    rule_id: Optional[int] = Field(None, description="来源规则ID")
    suggestion: Optional[str] = Field(None, description="建议的处理措施")
    description: Optional[str] = Field(None, description="描述")
    channel: Optional[str] = Field(None, max_length=64, description="通知渠道名称")


class Alert(BaseModel):
    """
    已持久化的告警

    创建后不可变。
    """

    model_config = ConfigDict(frozen=True)

    id: int
    device_id: str
    metric: str
    value: float
    threshold: float
    rule_id: Optional[int] = None
    suggestion: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class Event(BaseModel):
    """
    工作流触发事件

    除 event_type 外允许携带任意字段，事件负载按原样保存到审计日志。
    """

    model_config = ConfigDict(extra="allow")

    event_type: str = Field(..., min_length=1, max_length=128, description="事件类型")
    device_id: Optional[Any] = Field(None, description="相关设备ID，按原样保留")

    def payload(self) -> dict[str, Any]:
        """返回事件的原始负载"""
        return self.model_dump(mode="json", exclude_unset=True)


class WorkflowActionSpec(BaseModel):
    """
    工作流动作定义

    action_type 不限定为已知类型，未知类型在执行时得到 unknown 结果。
    """

    action_type: str = Field(..., min_length=1, max_length=64, description="动作类型")
    parameters: dict[str, Any] = Field(default_factory=dict, description="动作参数")

    @field_validator("parameters", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return {} if v is None else v


class WorkflowCreate(BaseModel):
    """创建工作流请求"""

    name: str = Field(..., min_length=1, max_length=255, description="工作流名称")
    event_type: str = Field(..., min_length=1, max_length=128, description="触发事件类型")
    conditions: Optional[dict[str, Any]] = Field(None, description="条件文档")
    actions: list[WorkflowActionSpec] = Field(..., min_length=1, description="有序动作列表")
    test: bool = Field(default=False, description="创建后是否立即试运行")
    test_event: Optional[dict[str, Any]] = Field(None, description="试运行事件")


class Workflow(BaseModel):
    """已持久化的工作流定义"""

    id: int
    name: str
    event_type: str
    conditions: Optional[dict[str, Any]] = None
    actions: list[WorkflowActionSpec] = Field(default_factory=list)
    created_at: Optional[datetime] = None


class ActionOutcome(BaseModel):
    """
    动作执行结果

    Attributes:
        action: 动作类型
        status: 执行状态
        message: 说明信息
    """

    action: str
    status: OutcomeStatus
    message: str = ""


class ExecutionResult(BaseModel):
    """单个工作流的执行结果"""

    workflow_id: int
    workflow_name: str = ""
    state: ExecutionState = ExecutionState.COMPLETED
    outcomes: list[ActionOutcome] = Field(default_factory=list)
    log_id: Optional[int] = None


class WorkflowLogEntry(BaseModel):
    """工作流审计日志记录"""

    id: int
    workflow_id: Optional[int] = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    result: list[ActionOutcome] = Field(default_factory=list)
    executed_at: Optional[datetime] = None
