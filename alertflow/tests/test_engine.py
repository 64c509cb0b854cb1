"""
工作流引擎测试
"""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from alertflow.automation.actions import ActionExecutor, ActionParameterError
from alertflow.automation.conditions import ConditionError
from alertflow.automation.engine import WorkflowEngine, WorkflowExecution
from alertflow.runtime.metrics import MetricsRegistry
from alertflow.storage.models import (
    Event,
    ExecutionState,
    OutcomeStatus,
    Workflow,
    WorkflowActionSpec,
    WorkflowCreate,
)
from alertflow.storage.repository import (
    Database,
    DatabaseError,
    NotFoundError,
    WorkflowLogRepository,
    WorkflowRepository,
)


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def engine(test_db: Database, metrics: MetricsRegistry) -> WorkflowEngine:
    return WorkflowEngine(
        WorkflowRepository(test_db),
        WorkflowLogRepository(test_db),
        ActionExecutor(metrics=metrics),
        metrics,
    )


class TestWorkflowCreation:
    """工作流创建测试"""

    @pytest.mark.asyncio
    async def test_create(self, engine: WorkflowEngine, disk_full_workflow_data: dict):
        workflow, test_result = await engine.create_workflow(
            WorkflowCreate.model_validate(disk_full_workflow_data)
        )

        assert workflow.id > 0
        assert [a.action_type for a in workflow.actions] == ["run_script", "notify"]
        assert test_result is None

    @pytest.mark.asyncio
    async def test_create_with_test_run(self, engine: WorkflowEngine, disk_full_workflow_data: dict):
        """测试创建时试运行不写日志"""
        data = dict(disk_full_workflow_data, test=True)
        workflow, test_result = await engine.create_workflow(WorkflowCreate.model_validate(data))

        assert [o.status for o in test_result] == [OutcomeStatus.SUCCESS, OutcomeStatus.SUCCESS]
        assert await engine.logs.count_logs() == 0

    @pytest.mark.asyncio
    async def test_create_with_test_event(self, engine: WorkflowEngine):
        data = {
            "name": "isolate",
            "event_type": "intrusion",
            "actions": [{"action_type": "isolate_device"}],
            "test_event": {"device_id": "srv-09"},
        }
        _, test_result = await engine.create_workflow(WorkflowCreate.model_validate(data))
        assert test_result[0].message == "device isolated"

    @pytest.mark.asyncio
    async def test_invalid_conditions_rejected(self, engine: WorkflowEngine, disk_full_workflow_data: dict):
        data = dict(disk_full_workflow_data, conditions={"type": "sometimes"})
        with pytest.raises(ConditionError):
            await engine.create_workflow(WorkflowCreate.model_validate(data))
        assert await engine.workflows.list_workflows() == []

    @pytest.mark.asyncio
    async def test_invalid_test_event_rejected(self, engine: WorkflowEngine, disk_full_workflow_data: dict):
        """测试试运行事件无效时不写入工作流"""
        data = dict(disk_full_workflow_data, test_event={"event_type": ""})
        with pytest.raises(ValidationError):
            await engine.create_workflow(WorkflowCreate.model_validate(data))
        assert await engine.workflows.list_workflows() == []

    @pytest.mark.asyncio
    async def test_invalid_parameters_rejected(self, engine: WorkflowEngine):
        data = {
            "name": "bad",
            "event_type": "disk_full",
            "actions": [{"action_type": "run_script", "parameters": {"args": "oops"}}],
        }
        with pytest.raises(ActionParameterError):
            await engine.create_workflow(WorkflowCreate.model_validate(data))
        assert await engine.workflows.list_workflows() == []

    @pytest.mark.asyncio
    async def test_unknown_action_kind_accepted(self, engine: WorkflowEngine):
        data = {
            "name": "cosmic",
            "event_type": "end_of_days",
            "actions": [{"action_type": "reboot_universe"}],
        }
        workflow, _ = await engine.create_workflow(WorkflowCreate.model_validate(data))
        assert workflow.actions[0].action_type == "reboot_universe"

    def test_empty_actions_rejected(self):
        with pytest.raises(ValueError):
            WorkflowCreate.model_validate({"name": "x", "event_type": "e", "actions": []})


class TestEventSubmission:
    """事件提交测试"""

    @pytest.mark.asyncio
    async def test_disk_full(self, engine: WorkflowEngine, disk_full_workflow_data: dict):
        """测试磁盘满事件触发清理工作流"""
        workflow, _ = await engine.create_workflow(WorkflowCreate.model_validate(disk_full_workflow_data))

        results = await engine.submit(Event(event_type="disk_full", device_id="srv-01"))

        assert len(results) == 1
        result = results[0]
        assert result.workflow_id == workflow.id
        assert result.state == ExecutionState.COMPLETED
        assert [o.status for o in result.outcomes] == [OutcomeStatus.SUCCESS, OutcomeStatus.SUCCESS]

        logs = await engine.logs.list_logs(workflow_id=workflow.id)
        assert len(logs) == 1
        assert logs[0].id == result.log_id
        assert logs[0].event_data == {"event_type": "disk_full", "device_id": "srv-01"}
        assert [o.action for o in logs[0].result] == ["run_script", "notify"]

    @pytest.mark.asyncio
    async def test_isolate_and_notify(self, engine: WorkflowEngine):
        await engine.create_workflow(
            WorkflowCreate(
                name="contain",
                event_type="disk_full",
                actions=[
                    WorkflowActionSpec(action_type="isolate_device"),
                    WorkflowActionSpec(action_type="notify"),
                ],
            )
        )

        results = await engine.submit(Event(event_type="disk_full", device_id="d1"))

        assert len(results) == 1
        assert [(o.action, o.status) for o in results[0].outcomes] == [
            ("isolate_device", OutcomeStatus.SUCCESS),
            ("notify", OutcomeStatus.SUCCESS),
        ]
        assert await engine.logs.count_logs() == 1

    @pytest.mark.asyncio
    async def test_unknown_action_continues(self, engine: WorkflowEngine):
        """测试未知动作不中断后续动作"""
        await engine.create_workflow(
            WorkflowCreate(
                name="cosmic",
                event_type="end_of_days",
                actions=[
                    WorkflowActionSpec(action_type="reboot_universe"),
                    WorkflowActionSpec(action_type="notify", parameters={"message": "rebooted"}),
                ],
            )
        )

        results = await engine.submit(Event(event_type="end_of_days"))

        statuses = [o.status for o in results[0].outcomes]
        assert statuses == [OutcomeStatus.UNKNOWN, OutcomeStatus.SUCCESS]
        assert await engine.logs.count_logs() == 1

    @pytest.mark.asyncio
    async def test_no_matching_workflow(self, engine: WorkflowEngine):
        assert await engine.submit(Event(event_type="nothing_listens")) == []
        assert await engine.logs.count_logs() == 0

    @pytest.mark.asyncio
    async def test_conditions_skip(self, engine: WorkflowEngine, metrics: MetricsRegistry):
        """测试条件不满足时跳过且不写日志"""
        await engine.create_workflow(
            WorkflowCreate(
                name="only disk",
                event_type="alert.raised",
                conditions={"metric": "disk"},
                actions=[WorkflowActionSpec(action_type="create_ticket")],
            )
        )

        assert await engine.submit(Event(event_type="alert.raised", metric="cpu")) == []
        assert await engine.logs.count_logs() == 0
        assert metrics.get_value("workflows_total", state="skipped") == 1

        results = await engine.submit(Event(event_type="alert.raised", metric="disk"))
        assert len(results) == 1
        assert await engine.logs.count_logs() == 1

    @pytest.mark.asyncio
    async def test_all_matching_workflows_run(self, engine: WorkflowEngine):
        """测试同一事件触发多个工作流且互不影响"""
        first, _ = await engine.create_workflow(
            WorkflowCreate(
                name="broken notify",
                event_type="intrusion",
                actions=[
                    WorkflowActionSpec(action_type="notify", parameters={"channel": "pager"}),
                    WorkflowActionSpec(action_type="isolate_device"),
                ],
            )
        )
        second, _ = await engine.create_workflow(
            WorkflowCreate(
                name="ticket",
                event_type="intrusion",
                actions=[WorkflowActionSpec(action_type="create_ticket")],
            )
        )

        results = await engine.submit(Event(event_type="intrusion", device_id="srv-07"))
        by_id = {r.workflow_id: r for r in results}

        assert set(by_id) == {first.id, second.id}
        assert [o.status for o in by_id[first.id].outcomes] == [
            OutcomeStatus.FAILURE,
            OutcomeStatus.SUCCESS,
        ]
        assert by_id[second.id].outcomes[0].status == OutcomeStatus.SUCCESS
        assert await engine.logs.count_logs() == 2

    @pytest.mark.asyncio
    async def test_log_failure_surfaces_after_all_workflows(self, test_db: Database):
        workflows = WorkflowRepository(test_db)
        await workflows.create("a", "disk_full", [WorkflowActionSpec(action_type="notify")])
        await workflows.create("b", "disk_full", [WorkflowActionSpec(action_type="notify")])

        logs = AsyncMock()
        logs.append.side_effect = [DatabaseError("disk I/O error"), 2]
        engine = WorkflowEngine(workflows, logs, ActionExecutor())

        with pytest.raises(DatabaseError):
            await engine.submit(Event(event_type="disk_full"))
        assert logs.append.await_count == 2


class TestWorkflowTest:
    """试运行测试"""

    @pytest.mark.asyncio
    async def test_test_is_idempotent(self, engine: WorkflowEngine, disk_full_workflow_data: dict):
        workflow, _ = await engine.create_workflow(WorkflowCreate.model_validate(disk_full_workflow_data))

        first = await engine.test(workflow.id, {"device_id": "srv-01"})
        second = await engine.test(workflow.id, {"device_id": "srv-01"})

        assert first == second
        assert await engine.logs.count_logs() == 0

    @pytest.mark.asyncio
    async def test_test_ignores_conditions(self, engine: WorkflowEngine):
        workflow, _ = await engine.create_workflow(
            WorkflowCreate(
                name="guarded",
                event_type="alert.raised",
                conditions={"metric": "disk"},
                actions=[WorkflowActionSpec(action_type="restart_service", parameters={"service": "db"})],
            )
        )
        outcomes = await engine.test(workflow.id, Event(event_type="alert.raised", metric="cpu"))
        assert outcomes[0].message == "service db"

    @pytest.mark.asyncio
    async def test_missing_workflow(self, engine: WorkflowEngine):
        with pytest.raises(NotFoundError):
            await engine.test(999, None)


class TestWorkflowExecution:
    """执行状态测试"""

    def test_transitions(self):
        workflow = Workflow(id=1, name="w", event_type="e", actions=[])
        execution = WorkflowExecution(workflow, Event(event_type="e"))

        assert execution.state == ExecutionState.RECEIVED
        execution.transition(ExecutionState.CONDITIONS_EVALUATED)
        execution.transition(ExecutionState.SKIPPED)

        result = execution.to_result()
        assert result.state == ExecutionState.SKIPPED
        assert result.outcomes == []
        assert result.log_id is None
