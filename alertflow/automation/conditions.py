"""
工作流条件模块

条件文档是一个带 type 标签的 JSON 对象，可以嵌套组合:

    {"type": "always"}
    {"type": "field", "field": "metric", "op": "eq", "value": "disk"}
    {"type": "all", "conditions": [...]}
    {"type": "any", "conditions": [...]}
    {"type": "not", "condition": {...}}

不带 type 的普通对象按"所有字段相等"解释，null 或空对象表示总是匹配。
字段路径支持点号访问嵌套对象，例如 "labels.site"。
"""

from enum import Enum
from typing import Annotated, Any, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError


class ConditionError(ValueError):
    """条件文档无法解析"""

    pass


class ConditionOperator(str, Enum):
    """字段比较运算符"""

    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    IN = "in"
    CONTAINS = "contains"
    EXISTS = "exists"


class AlwaysCondition(BaseModel):
    """总是匹配"""

    type: Literal["always"] = "always"


class FieldCondition(BaseModel):
    """
    字段条件

    Attributes:
        field: 字段路径
        op: 运算符
        value: 比较值；exists 运算符下表示期望字段是否存在
    """

    type: Literal["field"] = "field"
    field: str = Field(..., min_length=1)
    op: ConditionOperator = ConditionOperator.EQ
    value: Any = None


class AllCondition(BaseModel):
    """全部子条件成立"""

    type: Literal["all"] = "all"
    conditions: List["Condition"] = Field(default_factory=list)


class AnyCondition(BaseModel):
    """任一子条件成立"""

    type: Literal["any"] = "any"
    conditions: List["Condition"] = Field(..., min_length=1)


class NotCondition(BaseModel):
    """子条件不成立"""

    type: Literal["not"] = "not"
    condition: "Condition"


Condition = Annotated[
    Union[AlwaysCondition, FieldCondition, AllCondition, AnyCondition, NotCondition],
    Field(discriminator="type"),
]

AllCondition.model_rebuild()
AnyCondition.model_rebuild()
NotCondition.model_rebuild()

_condition_adapter: TypeAdapter = TypeAdapter(Condition)


def parse_conditions(document: Optional[Mapping[str, Any]]) -> Condition:
    """
    解析条件文档

    Args:
        document: 条件文档

    Returns:
        条件对象

    Raises:
        ConditionError: 文档结构无效
    """
    if document is None or (isinstance(document, Mapping) and not document):
        return AlwaysCondition()

    if not isinstance(document, Mapping):
        raise ConditionError("conditions must be a JSON object")

    if "type" not in document:
        return AllCondition(
            conditions=[FieldCondition(field=str(key), value=value) for key, value in document.items()]
        )

    try:
        return _condition_adapter.validate_python(dict(document))
    except ValidationError as e:
        raise ConditionError(f"invalid conditions: {e}") from e


def resolve_path(payload: Mapping[str, Any], path: str) -> Tuple[bool, Any]:
    """按点号路径取值，返回 (是否存在, 值)"""
    current: Any = payload
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return False, None
    return True, current


def _compare(op: ConditionOperator, actual: Any, expected: Any) -> bool:
    if op == ConditionOperator.EQ:
        return actual == expected
    if op == ConditionOperator.NE:
        return actual != expected

    try:
        if op == ConditionOperator.GT:
            return actual > expected
        if op == ConditionOperator.LT:
            return actual < expected
        if op == ConditionOperator.GTE:
            return actual >= expected
        if op == ConditionOperator.LTE:
            return actual <= expected
        if op == ConditionOperator.IN:
            return actual in expected
        if op == ConditionOperator.CONTAINS:
            return expected in actual
    except TypeError:
        return False

    return False


def evaluate_condition(condition: Condition, payload: Mapping[str, Any]) -> bool:
    """
    在事件负载上求值

    类型不匹配的比较（例如字符串与数字比较大小）视为不成立。

    Args:
        condition: 条件对象
        payload: 事件负载

    Returns:
        条件是否成立
    """
    if isinstance(condition, AlwaysCondition):
        return True

    if isinstance(condition, FieldCondition):
        found, actual = resolve_path(payload, condition.field)
        if condition.op == ConditionOperator.EXISTS:
            expected = True if condition.value is None else bool(condition.value)
            return found == expected
        if not found:
            return False
        return _compare(condition.op, actual, condition.value)

    if isinstance(condition, AllCondition):
        return all(evaluate_condition(c, payload) for c in condition.conditions)

    if isinstance(condition, AnyCondition):
        return any(evaluate_condition(c, payload) for c in condition.conditions)

    if isinstance(condition, NotCondition):
        return not evaluate_condition(condition.condition, payload)

    raise ConditionError(f"unsupported condition: {condition!r}")


def conditions_match(document: Optional[Mapping[str, Any]], payload: Mapping[str, Any]) -> bool:
    """解析并求值条件文档"""
    return evaluate_condition(parse_conditions(document), payload)
