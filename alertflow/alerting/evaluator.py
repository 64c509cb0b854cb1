"""
规则评估模块

对单个遥测样本按阈值规则逐条判断，输出告警意图。

Functions:
    evaluate: 纯函数，给定样本和规则集返回告警意图列表

Classes:
    RuleEvaluationService: 加载当前规则集并把意图交给告警汇聚器
"""

from typing import TYPE_CHECKING, Iterable, List, Optional

from loguru import logger

from ..runtime.metrics import MetricsRegistry
from ..runtime.queue import QueueError, WorkerPool
from ..storage.models import AlertIntent, AlertRule, Comparison, TelemetrySample
from ..storage.repository import AlertRuleRepository, DatabaseError

if TYPE_CHECKING:
    from .sink import AlertSink


DEFAULT_SUGGESTIONS = {
    "cpu": "Investigate high CPU usage by reviewing running processes and workloads.",
    "memory": "Analyse memory consumption and optimise applications to reduce usage.",
    "disk": "Check disk utilisation; free up space or expand storage as required.",
    "latency": "Investigate network latency; verify connectivity and reduce load.",
}

GENERIC_SUGGESTION = "Investigate the alert condition and take appropriate action."


def default_suggestion(metric: str) -> str:
    """按指标返回默认处理建议"""
    return DEFAULT_SUGGESTIONS.get(metric, GENERIC_SUGGESTION)


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def describe_rule(rule: AlertRule) -> str:
    """生成规则的默认描述"""
    return f"Metric {rule.metric} {rule.comparison.value} threshold {_format_number(rule.threshold)}"


def is_breach(value: float, rule: AlertRule) -> bool:
    """判断观测值是否突破规则阈值"""
    if rule.comparison == Comparison.GT:
        return value > rule.threshold
    if rule.comparison == Comparison.LT:
        return value < rule.threshold
    return False


def evaluate(sample: TelemetrySample, rules: Iterable[AlertRule]) -> List[AlertIntent]:
    """
    评估样本

    指标缺失（不存在或为 null）的规则直接跳过。每条被突破的规则产生
    一个告警意图，顺序与规则顺序一致。

    Args:
        sample: 遥测样本
        rules: 规则集快照

    Returns:
        告警意图列表
    """
    intents: List[AlertIntent] = []

    for rule in rules:
        value = sample.value_of(rule.metric)
        if value is None:
            continue
        if not is_breach(value, rule):
            continue

        intents.append(
            AlertIntent(
                device_id=sample.device_id,
                metric=rule.metric,
                value=value,
                threshold=rule.threshold,
                rule_id=rule.id,
                suggestion=rule.suggestion or default_suggestion(rule.metric),
                description=rule.description or describe_rule(rule),
                channel=rule.channel,
            )
        )

    return intents


class RuleEvaluationService:
    """
    规则评估服务

    每次评估都重新读取规则集，规则的增改与评估互不影响。

    Attributes:
        rules: 规则仓储
        sink: 告警汇聚器
        metrics: 指标注册中心
    """

    def __init__(
        self,
        rules: AlertRuleRepository,
        sink: "AlertSink",
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.rules = rules
        self.sink = sink
        self.metrics = metrics or MetricsRegistry()

    async def run(self, sample: TelemetrySample) -> List[int]:
        """
        评估样本并提交告警

        规则集无法读取时记录错误后抛出；单个告警持久化失败只记录，不影响
        其余告警。

        Args:
            sample: 遥测样本

        Returns:
            已持久化的告警ID列表
        """
        try:
            rules = await self.rules.list_rules()
        except DatabaseError as e:
            self.metrics.increment("evaluations_total", result="failed")
            logger.error(f"Failed to load alert rules for device {sample.device_id}: {e}")
            raise

        intents = evaluate(sample, rules)
        raised: List[int] = []

        for intent in intents:
            try:
                alert_id = await self.sink.raise_alert(intent)
            except DatabaseError as e:
                logger.error(
                    f"Failed to persist alert for device {intent.device_id} "
                    f"metric {intent.metric}: {e}"
                )
                continue
            if alert_id is not None:
                raised.append(alert_id)

        self.metrics.increment("evaluations_total", result="succeeded")
        if intents:
            logger.info(
                f"Device {sample.device_id}: {len(intents)} breach(es), {len(raised)} alert(s) raised"
            )
        return raised

    def dispatch(self, sample: TelemetrySample, pool: WorkerPool) -> bool:
        """
        把评估作为后台任务提交

        Args:
            sample: 遥测样本
            pool: 工作池

        Returns:
            是否成功入队
        """
        try:
            pool.submit(f"evaluate:{sample.device_id}", lambda: self.run(sample))
        except QueueError as e:
            self.metrics.increment("evaluations_total", result="dropped")
            logger.warning(f"Rule evaluation for device {sample.device_id} dropped: {e}")
            return False
        return True
