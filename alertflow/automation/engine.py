"""
工作流引擎模块

事件到达后，引擎找出 event_type 匹配的全部工作流并发执行。每个工作流
的执行经过以下状态:

    received -> conditions-evaluated -> skipped
                                     -> actions-running -> completed

动作按定义顺序依次执行，单个动作失败不会中断后续动作。非试运行的
执行结束后追加一条审计日志；被跳过的工作流不记录日志。
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Tuple, Union

from loguru import logger

from ..runtime.metrics import MetricsRegistry
from ..storage.models import (
    ActionOutcome,
    Event,
    ExecutionResult,
    ExecutionState,
    Workflow,
    WorkflowCreate,
)
from ..storage.repository import NotFoundError, WorkflowLogRepository, WorkflowRepository
from .actions import ActionExecutor
from .conditions import ConditionError, conditions_match, parse_conditions


@dataclass
class WorkflowExecution:
    """
    单次工作流执行

    Attributes:
        workflow: 工作流定义
        event: 触发事件
        test_mode: 是否为试运行
        state: 当前状态
        outcomes: 已完成动作的结果
    """

    workflow: Workflow
    event: Event
    test_mode: bool = False
    state: ExecutionState = ExecutionState.RECEIVED
    outcomes: List[ActionOutcome] = field(default_factory=list)
    log_id: Optional[int] = None

    def transition(self, state: ExecutionState) -> None:
        logger.debug(
            f"Workflow {self.workflow.id} ({self.workflow.name}): "
            f"{self.state.value} -> {state.value}"
        )
        self.state = state

    def to_result(self) -> ExecutionResult:
        return ExecutionResult(
            workflow_id=self.workflow.id,
            workflow_name=self.workflow.name,
            state=self.state,
            outcomes=list(self.outcomes),
            log_id=self.log_id,
        )


class WorkflowEngine:
    """
    工作流引擎

    Attributes:
        workflows: 工作流仓储
        logs: 审计日志仓储
        executor: 动作执行器
        metrics: 指标注册中心
    """

    def __init__(
        self,
        workflows: WorkflowRepository,
        logs: WorkflowLogRepository,
        executor: ActionExecutor,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.workflows = workflows
        self.logs = logs
        self.executor = executor
        self.metrics = metrics or MetricsRegistry()

    async def create_workflow(
        self, request: WorkflowCreate
    ) -> Tuple[Workflow, Optional[List[ActionOutcome]]]:
        """
        创建工作流

        条件文档和已知动作类型的参数在写入前校验。请求要求试运行时，
        创建后立即用试运行事件执行一次，不记录审计日志。

        Args:
            request: 创建请求

        Returns:
            (工作流, 试运行结果或 None)

        Raises:
            ConditionError: 条件文档无效
            ActionParameterError: 动作参数无效
            ValidationError: 试运行事件无效
        """
        parse_conditions(request.conditions)
        for action in request.actions:
            self.executor.validate_parameters(action.action_type, action.parameters)

        test_event = None
        if request.test or request.test_event is not None:
            test_event = self._build_test_event(request.event_type, request.test_event or {"test": True})

        workflow = await self.workflows.create(
            name=request.name,
            event_type=request.event_type,
            actions=request.actions,
            conditions=request.conditions,
        )
        logger.info(
            f"Workflow {workflow.id} '{workflow.name}' created for event type "
            f"'{workflow.event_type}' with {len(workflow.actions)} action(s)"
        )

        test_result = None
        if test_event is not None:
            execution = await self._run(WorkflowExecution(workflow, test_event, test_mode=True), check=False)
            test_result = execution.outcomes

        return workflow, test_result

    async def submit(self, event: Event) -> List[ExecutionResult]:
        """
        提交事件

        匹配的工作流并发执行，全部结束后返回。持久化失败会在其余工作流
        执行完毕后抛出。

        Args:
            event: 事件

        Returns:
            已完成（未被跳过）的工作流执行结果
        """
        workflows = await self.workflows.find_by_event_type(event.event_type)
        if not workflows:
            logger.debug(f"No workflow registered for event type '{event.event_type}'")
            return []

        executions = [WorkflowExecution(workflow, event) for workflow in workflows]
        outcomes = await asyncio.gather(
            *(self._run(execution) for execution in executions),
            return_exceptions=True,
        )

        errors = [o for o in outcomes if isinstance(o, BaseException)]
        if errors:
            for error in errors:
                logger.error(f"Workflow execution for '{event.event_type}' failed: {error!r}")
            raise errors[0]

        results = [e.to_result() for e in executions if e.state == ExecutionState.COMPLETED]
        logger.info(
            f"Event '{event.event_type}' processed: {len(results)} of "
            f"{len(executions)} workflow(s) ran"
        )
        return results

    async def test(
        self,
        workflow_id: int,
        event: Union[Event, Mapping[str, Any], None] = None,
    ) -> List[ActionOutcome]:
        """
        试运行工作流

        按ID直接执行动作，不匹配 event_type，也不记录审计日志。

        Args:
            workflow_id: 工作流ID
            event: 试运行事件；缺少 event_type 时使用工作流的触发类型

        Returns:
            动作执行结果

        Raises:
            NotFoundError: 工作流不存在
        """
        workflow = await self.workflows.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")

        if not isinstance(event, Event):
            event = self._build_test_event(workflow.event_type, event or {})

        execution = await self._run(WorkflowExecution(workflow, event, test_mode=True), check=False)
        return execution.outcomes

    @staticmethod
    def _build_test_event(event_type: str, data: Mapping[str, Any]) -> Event:
        payload = dict(data)
        payload.setdefault("event_type", event_type)
        return Event.model_validate(payload)

    def _conditions_hold(self, execution: WorkflowExecution) -> bool:
        try:
            return conditions_match(execution.workflow.conditions, execution.event.payload())
        except ConditionError as e:
            logger.warning(f"Workflow {execution.workflow.id} has unusable conditions: {e}")
            return False

    async def _run(self, execution: WorkflowExecution, check: bool = True) -> WorkflowExecution:
        workflow = execution.workflow

        if check:
            matched = self._conditions_hold(execution)
            execution.transition(ExecutionState.CONDITIONS_EVALUATED)
            if not matched:
                execution.transition(ExecutionState.SKIPPED)
                self.metrics.increment("workflows_total", state=ExecutionState.SKIPPED.value)
                return execution
        else:
            execution.transition(ExecutionState.CONDITIONS_EVALUATED)

        execution.transition(ExecutionState.ACTIONS_RUNNING)
        for action in workflow.actions:
            outcome = await self.executor.execute(action.action_type, action.parameters, execution.event)
            execution.outcomes.append(outcome)

        if not execution.test_mode:
            execution.log_id = await self.logs.append(
                workflow.id, execution.event.payload(), execution.outcomes
            )

        execution.transition(ExecutionState.COMPLETED)
        self.metrics.increment(
            "workflows_total",
            state=ExecutionState.COMPLETED.value,
            mode="test" if execution.test_mode else "live",
        )
        logger.info(
            f"Workflow {workflow.id} '{workflow.name}' completed"
            f"{' (test)' if execution.test_mode else ''}: "
            + ", ".join(f"{o.action}={o.status.value}" for o in execution.outcomes)
        )
        return execution
