"""
动作执行模块

工作流动作通过固定的处理器注册表执行。已知动作类型有各自的参数模型，
未知类型不会中断工作流，而是得到 unknown 结果。

已知动作类型:
    run_script        运行脚本
    restart_service   重启服务
    isolate_device    隔离设备
    notify            发送通知 (send_notification 为别名)
    create_ticket     创建工单
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Type

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..alerting.channels import Notification, NotificationChannel
from ..runtime.metrics import MetricsRegistry
from ..storage.models import ActionKind, ActionOutcome, Event, OutcomeStatus


class ActionParameterError(ValueError):
    """动作参数不符合该动作类型的要求"""

    pass


class ActionParams(BaseModel):
    """动作参数基类"""

    model_config = ConfigDict(extra="forbid")


class RunScriptParams(ActionParams):
    script: Optional[str] = Field(None, description="脚本名称或路径")
    args: List[str] = Field(default_factory=list, description="脚本参数")


class RestartServiceParams(ActionParams):
    service: Optional[str] = Field(None, description="服务名称")


class IsolateDeviceParams(ActionParams):
    device_id: Optional[str] = Field(None, description="设备ID，缺省取事件中的设备")


class NotifyParams(ActionParams):
    message: Optional[str] = Field(None, description="通知内容")
    channel: Optional[str] = Field(None, description="通知渠道名称")
    subject: Optional[str] = Field(None, description="通知标题")


class CreateTicketParams(ActionParams):
    summary: Optional[str] = Field(None, description="工单摘要")
    priority: str = Field(default="medium", description="工单优先级")
    description: Optional[str] = Field(None, description="工单描述")


HandlerResult = Tuple[OutcomeStatus, str]
ActionHandler = Callable[[Any, Event], Awaitable[HandlerResult]]


class ActionExecutor:
    """
    动作执行器

    execute 从不抛出异常：参数错误和处理器异常都转换为 failure 结果，
    未知动作类型得到 unknown 结果。

    Attributes:
        channels: 可供 notify 动作使用的通知渠道
        ticket_channel: create_ticket 使用的 ITSM 渠道
        timeout: 外部调用超时（秒）
    """

    def __init__(
        self,
        channels: Optional[Mapping[str, NotificationChannel]] = None,
        ticket_channel: Optional[NotificationChannel] = None,
        timeout: float = 10.0,
        metrics: Optional[MetricsRegistry] = None,
    ):
        self.channels = dict(channels or {})
        self.ticket_channel = ticket_channel
        self.timeout = timeout
        self.metrics = metrics or MetricsRegistry()

        self._registry: Dict[str, Tuple[Type[ActionParams], ActionHandler]] = {
            ActionKind.RUN_SCRIPT.value: (RunScriptParams, self._run_script),
            ActionKind.RESTART_SERVICE.value: (RestartServiceParams, self._restart_service),
            ActionKind.ISOLATE_DEVICE.value: (IsolateDeviceParams, self._isolate_device),
            ActionKind.NOTIFY.value: (NotifyParams, self._notify),
            ActionKind.SEND_NOTIFICATION.value: (NotifyParams, self._notify),
            ActionKind.CREATE_TICKET.value: (CreateTicketParams, self._create_ticket),
        }

    @property
    def known_kinds(self) -> List[str]:
        return list(self._registry)

    def is_known(self, action_type: str) -> bool:
        return action_type in self._registry

    def validate_parameters(self, action_type: str, parameters: Optional[Mapping[str, Any]]) -> None:
        """
        校验动作参数

        未知动作类型不做校验，只记录警告。

        Raises:
            ActionParameterError: 已知动作类型的参数无效
        """
        entry = self._registry.get(action_type)
        if entry is None:
            logger.warning(f"Workflow action type '{action_type}' is not registered")
            return

        model, _ = entry
        try:
            model.model_validate(dict(parameters or {}))
        except ValidationError as e:
            raise ActionParameterError(f"invalid parameters for {action_type}: {e}") from e

    async def execute(
        self,
        action_type: str,
        parameters: Optional[Mapping[str, Any]],
        event: Event,
    ) -> ActionOutcome:
        """
        执行单个动作

        Args:
            action_type: 动作类型
            parameters: 动作参数
            event: 触发事件

        Returns:
            动作执行结果
        """
        entry = self._registry.get(action_type)
        if entry is None:
            logger.warning(f"Unknown action type: {action_type}")
            return self._outcome(action_type, OutcomeStatus.UNKNOWN, "unknown action")

        model, handler = entry
        try:
            params = model.model_validate(dict(parameters or {}))
        except ValidationError as e:
            logger.error(f"Action {action_type} has invalid parameters: {e}")
            return self._outcome(action_type, OutcomeStatus.FAILURE, "invalid parameters")

        try:
            status, message = await handler(params, event)
        except Exception as e:
            logger.error(f"Action {action_type} failed: {e!r}")
            return self._outcome(action_type, OutcomeStatus.FAILURE, str(e) or type(e).__name__)

        return self._outcome(action_type, status, message)

    def _outcome(self, action_type: str, status: OutcomeStatus, message: str) -> ActionOutcome:
        self.metrics.increment("actions_total", action=action_type, status=status.value)
        return ActionOutcome(action=action_type, status=status, message=message)

    async def _run_script(self, params: RunScriptParams, event: Event) -> HandlerResult:
        logger.info(f"Running script: {params.script or 'default script'}")
        return OutcomeStatus.SUCCESS, f"script {params.script or 'executed'}"

    async def _restart_service(self, params: RestartServiceParams, event: Event) -> HandlerResult:
        logger.info(f"Restarting service: {params.service or 'unknown service'}")
        return OutcomeStatus.SUCCESS, f"service {params.service or 'restarted'}"

    async def _isolate_device(self, params: IsolateDeviceParams, event: Event) -> HandlerResult:
        device_id = params.device_id or event.device_id or "unknown"
        logger.info(f"Isolating device {device_id}")
        return OutcomeStatus.SUCCESS, "device isolated"

    async def _notify(self, params: NotifyParams, event: Event) -> HandlerResult:
        message = params.message or "service failure detected"
        logger.info(f"Sending notification: {message}")

        if params.channel is None:
            return OutcomeStatus.SUCCESS, "notification sent"

        channel = self.channels.get(params.channel)
        if channel is None or not channel.is_configured():
            return OutcomeStatus.FAILURE, f"channel {params.channel} not configured"

        notification = Notification(
            subject=params.subject or f"Workflow notification: {event.event_type}",
            body=message,
            payload={"message": message, "event": event.payload()},
        )
        if not await self._send(channel, notification):
            return OutcomeStatus.FAILURE, f"notification via {params.channel} failed"
        return OutcomeStatus.SUCCESS, "notification sent"

    async def _create_ticket(self, params: CreateTicketParams, event: Event) -> HandlerResult:
        summary = params.summary or f"{event.event_type} on {event.device_id or 'unknown device'}"
        logger.info(f"Creating ticket: {summary} (priority {params.priority})")

        if self.ticket_channel is None or not self.ticket_channel.is_configured():
            return OutcomeStatus.SUCCESS, "ticket created"

        notification = Notification(
            subject=summary,
            body=params.description or summary,
            payload={
                "summary": summary,
                "priority": params.priority,
                "description": params.description,
                "event": event.payload(),
            },
        )
        if not await self._send(self.ticket_channel, notification):
            return OutcomeStatus.FAILURE, "ticket submission failed"
        return OutcomeStatus.SUCCESS, "ticket created"

    async def _send(self, channel: NotificationChannel, notification: Notification) -> bool:
        try:
            return await asyncio.wait_for(channel.send(notification), self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Channel '{channel.name}' timed out after {self.timeout}s")
            return False
