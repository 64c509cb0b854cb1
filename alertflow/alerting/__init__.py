"""
告警模块

提供阈值规则评估、通知渠道和告警汇聚器。
"""

from .channels import (
    EmailChannel,
    LogChannel,
    Notification,
    NotificationChannel,
    WebhookChannel,
    build_channels,
)
from .evaluator import (
    DEFAULT_SUGGESTIONS,
    GENERIC_SUGGESTION,
    RuleEvaluationService,
    default_suggestion,
    describe_rule,
    evaluate,
    is_breach,
)
from .sink import AlertSink, DedupStrategy, NoDedup, TimeWindowDedup

__all__ = [
    "EmailChannel",
    "LogChannel",
    "Notification",
    "NotificationChannel",
    "WebhookChannel",
    "build_channels",
    "DEFAULT_SUGGESTIONS",
    "GENERIC_SUGGESTION",
    "RuleEvaluationService",
    "default_suggestion",
    "describe_rule",
    "evaluate",
    "is_breach",
    "AlertSink",
    "DedupStrategy",
    "NoDedup",
    "TimeWindowDedup",
]
