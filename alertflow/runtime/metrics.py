"""
运行指标模块

记录流水线计数器和仪表值，并导出为 Prometheus 文本格式。

Classes:
    MetricValue: 指标值数据结构
    MetricsRegistry: 指标注册中心
"""

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Tuple, Union

from loguru import logger

LabelKey = Tuple[Tuple[str, str], ...]


@dataclass
class MetricValue:
    """
    指标值数据结构

    Attributes:
        name: 指标名称
        value: 指标值
        timestamp: 时间戳
        labels: 标签字典
        kind: 指标类型 (counter / gauge)
        description: 描述
    """

    name: str
    value: Union[int, float]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    labels: Dict[str, str] = field(default_factory=dict)
    kind: str = "counter"
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "name": self.name,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "labels": self.labels,
            "kind": self.kind,
            "description": self.description,
        }

    def to_prometheus(self) -> str:
        """转换为 Prometheus 样本行"""
        labels_str = ""
        if self.labels:
            labels_str = "{" + ",".join(f'{k}="{v}"' for k, v in sorted(self.labels.items())) + "}"
        return f"{self.name}{labels_str} {self.value}"


def _label_key(labels: Dict[str, Any]) -> LabelKey:
    return tuple(sorted((k, str(v)) for k, v in labels.items()))


class MetricsRegistry:
    """
    指标注册中心

    计数器与仪表值按 (名称, 标签) 存储；仪表值也可以注册为采集函数，
    在导出时读取。

    Attributes:
        prefix: 指标名称前缀
    """

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self._values: Dict[str, Dict[LabelKey, float]] = {}
        self._kinds: Dict[str, str] = {}
        self._descriptions: Dict[str, str] = {}
        self._collectors: Dict[str, Callable[[], Union[int, float]]] = {}
        self._lock = threading.Lock()

    def _full_name(self, name: str) -> str:
        return f"{self.prefix}_{name}" if self.prefix else name

    def describe(self, name: str, description: str, kind: str = "counter") -> None:
        """登记指标说明"""
        full_name = self._full_name(name)
        self._descriptions[full_name] = description
        self._kinds[full_name] = kind

    def increment(self, name: str, amount: Union[int, float] = 1, **labels: Any) -> None:
        """
        增加计数器

        Args:
            name: 指标名称
            amount: 增量
            **labels: 标签
        """
        full_name = self._full_name(name)
        key = _label_key(labels)
        with self._lock:
            series = self._values.setdefault(full_name, {})
            series[key] = series.get(key, 0) + amount
            self._kinds.setdefault(full_name, "counter")

    def set_gauge(self, name: str, value: Union[int, float], **labels: Any) -> None:
        """设置仪表值"""
        full_name = self._full_name(name)
        with self._lock:
            self._values.setdefault(full_name, {})[_label_key(labels)] = value
            self._kinds[full_name] = "gauge"

    def register(self, name: str, collector: Callable[[], Union[int, float]]) -> None:
        """
        注册采集函数

        Args:
            name: 指标名称
            collector: 返回当前值的函数
        """
        full_name = self._full_name(name)
        self._collectors[full_name] = collector
        self._kinds[full_name] = "gauge"
        logger.debug(f"Registered metric collector: {full_name}")

    def unregister(self, name: str) -> bool:
        full_name = self._full_name(name)
        if full_name in self._collectors:
            del self._collectors[full_name]
            return True
        return False

    def get_value(self, name: str, **labels: Any) -> Union[int, float]:
        """读取指标当前值，不存在时返回 0"""
        full_name = self._full_name(name)
        collector = self._collectors.get(full_name)
        if collector is not None:
            return collector()
        with self._lock:
            return self._values.get(full_name, {}).get(_label_key(labels), 0)

    def total(self, name: str) -> Union[int, float]:
        """汇总指标所有标签组合的值"""
        full_name = self._full_name(name)
        with self._lock:
            return sum(self._values.get(full_name, {}).values())

    def get_all(self) -> List[MetricValue]:
        """获取所有指标"""
        result: List[MetricValue] = []
        with self._lock:
            snapshot = {name: dict(series) for name, series in self._values.items()}

        for name, series in snapshot.items():
            for key, value in series.items():
                result.append(
                    MetricValue(
                        name=name,
                        value=value,
                        labels=dict(key),
                        kind=self._kinds.get(name, "counter"),
                        description=self._descriptions.get(name, ""),
                    )
                )

        for name, collector in self._collectors.items():
            try:
                result.append(
                    MetricValue(
                        name=name,
                        value=collector(),
                        kind="gauge",
                        description=self._descriptions.get(name, ""),
                    )
                )
            except Exception as e:
                logger.error(f"Error collecting metric {name}: {e}")

        return result

    def export_prometheus(self) -> str:
        """
        导出 Prometheus 格式

        Returns:
            Prometheus 格式的指标字符串
        """
        grouped: Dict[str, List[MetricValue]] = {}
        for metric in self.get_all():
            grouped.setdefault(metric.name, []).append(metric)

        lines = []
        for name in sorted(grouped):
            description = self._descriptions.get(name)
            if description:
                lines.append(f"# HELP {name} {description}")
            lines.append(f"# TYPE {name} {self._kinds.get(name, 'counter')}")
            for metric in grouped[name]:
                lines.append(metric.to_prometheus())

        return "\n".join(lines) + "\n" if lines else ""

    def export_json(self) -> str:
        """导出 JSON 格式"""
        return json.dumps([metric.to_dict() for metric in self.get_all()], indent=2)

    def get_metric_names(self) -> List[str]:
        """获取所有指标名称"""
        return sorted(set(self._values) | set(self._collectors))


def create_pipeline_metrics(prefix: str = "alertflow") -> MetricsRegistry:
    """
    创建带有流水线指标说明的注册中心

    Args:
        prefix: 指标名称前缀

    Returns:
        指标注册中心
    """
    registry = MetricsRegistry(prefix=prefix)
    registry.describe("samples_ingested_total", "Telemetry samples persisted")
    registry.describe("evaluations_total", "Rule evaluations by result")
    registry.describe("alerts_raised_total", "Alerts persisted")
    registry.describe("alerts_suppressed_total", "Alert intents dropped by dedup strategy")
    registry.describe("notifications_total", "Notification dispatches by channel and result")
    registry.describe("workflows_total", "Workflow executions by final state")
    registry.describe("actions_total", "Workflow action outcomes by kind and status")
    registry.describe("tasks_total", "Background tasks by result")
    registry.describe("tasks_dropped_total", "Background tasks rejected by a full or stopped pool")
    return registry

