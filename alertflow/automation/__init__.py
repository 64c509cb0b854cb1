"""
自动化模块

提供工作流条件、动作执行器和工作流引擎。
"""

from .actions import ActionExecutor, ActionParameterError
from .conditions import (
    ConditionError,
    ConditionOperator,
    conditions_match,
    evaluate_condition,
    parse_conditions,
)
from .engine import WorkflowEngine, WorkflowExecution

__all__ = [
    "ActionExecutor",
    "ActionParameterError",
    "ConditionError",
    "ConditionOperator",
    "conditions_match",
    "evaluate_condition",
    "parse_conditions",
    "WorkflowEngine",
    "WorkflowExecution",
]
