"""
HTTP 接口模块

基于 aiohttp.web 提供采集、告警、规则、工作流和审计日志接口。

路由:
    GET    /healthz                  健康检查
    GET    /metrics                  Prometheus 指标
    POST   /api/ingest               上报遥测样本
    POST   /api/alerts               直接提交告警
    GET    /api/alerts               查询告警
    POST   /api/alert-rules          创建告警规则
    GET    /api/alert-rules          列出告警规则
    POST   /api/workflows            创建工作流
    GET    /api/workflows            列出工作流
    GET    /api/workflows/{id}       查看工作流
    DELETE /api/workflows/{id}       删除工作流
    POST   /api/workflows/test       试运行工作流
    POST   /api/events               提交事件
    GET    /api/workflow-logs        查询审计日志
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional

from aiohttp import web
from loguru import logger
from pydantic import BaseModel, ValidationError

from ..automation.actions import ActionParameterError
from ..automation.conditions import ConditionError
from ..config.settings import Settings, get_settings
from ..services import AlertFlowServices
from ..storage.models import AlertIntent, AlertRule, Event, TelemetrySample, WorkflowCreate
from ..storage.repository import DatabaseError, NotFoundError

SERVICES_KEY = web.AppKey("services", AlertFlowServices)

MAX_PAGE_SIZE = 1000


class RequestError(ValueError):
    """请求格式错误"""

    pass


class APIEncoder(json.JSONEncoder):
    """接口响应 JSON 编码器"""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, BaseModel):
            return obj.model_dump(mode="json")
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """创建 JSON 响应"""
    return web.Response(
        text=json.dumps(data, cls=APIEncoder),
        status=status,
        content_type="application/json",
    )


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """把领域异常映射为 HTTP 状态码"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except ValidationError as e:
        return json_response(
            {
                "error": "validation_error",
                "details": e.errors(include_url=False, include_context=False, include_input=False),
            },
            status=400,
        )
    except (RequestError, ConditionError, ActionParameterError) as e:
        return json_response({"error": "validation_error", "details": str(e)}, status=400)
    except NotFoundError as e:
        return json_response({"error": "not_found", "details": str(e)}, status=404)
    except DatabaseError as e:
        logger.error(f"{request.method} {request.path} failed: {e}")
        return json_response({"error": "internal_error"}, status=500)
    except Exception as e:
        logger.error(f"Unhandled error on {request.method} {request.path}: {e!r}")
        return json_response({"error": "internal_error"}, status=500)


async def read_json_object(request: web.Request) -> Dict[str, Any]:
    """读取 JSON 对象请求体"""
    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        raise RequestError(f"invalid JSON body: {e}") from e
    if not isinstance(body, dict):
        raise RequestError("request body must be a JSON object")
    return body


def query_int(request: web.Request, name: str, default: int, maximum: Optional[int] = None) -> int:
    """读取整数查询参数"""
    raw = request.query.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise RequestError(f"query parameter '{name}' must be an integer") from None
    if value < 0:
        raise RequestError(f"query parameter '{name}' must not be negative")
    if maximum is not None:
        value = min(value, maximum)
    return value


def path_id(request: web.Request) -> int:
    try:
        return int(request.match_info["id"])
    except ValueError:
        raise RequestError("id must be an integer") from None


class AlertFlowAPI:
    """HTTP 接口处理器"""

    def __init__(self, services: AlertFlowServices):
        self.services = services

    async def health(self, request: web.Request) -> web.Response:
        """
        GET /healthz

        数据库可达时返回 200，否则 503。
        """
        try:
            await self.services.db.ping()
        except DatabaseError as e:
            logger.error(f"Health check failed: {e}")
            return json_response({"status": "unhealthy", "database": "unreachable"}, status=503)
        return json_response(
            {"status": "ok", "database": "ok", "queue_depth": self.services.pool.depth}
        )

    async def metrics(self, request: web.Request) -> web.Response:
        """GET /metrics"""
        return web.Response(
            text=self.services.metrics.export_prometheus(),
            content_type="text/plain",
        )

    async def ingest(self, request: web.Request) -> web.Response:
        """
        POST /api/ingest

        样本持久化后立即返回 202，规则评估在后台进行。
        """
        body = await read_json_object(request)
        sample = TelemetrySample.model_validate(body)
        await self.services.ingest(sample)
        return json_response({"status": "accepted"}, status=202)

    async def raise_alert(self, request: web.Request) -> web.Response:
        """POST /api/alerts"""
        body = await read_json_object(request)
        intent = AlertIntent.model_validate(body)
        alert_id = await self.services.sink.raise_alert(intent)
        return json_response(
            {"status": "alert_processed", "alert_id": alert_id, "suppressed": alert_id is None},
            status=202,
        )

    async def list_alerts(self, request: web.Request) -> web.Response:
        """GET /api/alerts"""
        alerts = await self.services.alerts.list_alerts(
            device_id=request.query.get("device_id"),
            metric=request.query.get("metric"),
            limit=query_int(request, "limit", 100, MAX_PAGE_SIZE),
            offset=query_int(request, "offset", 0),
        )
        return json_response({"alerts": alerts})

    async def create_rule(self, request: web.Request) -> web.Response:
        """POST /api/alert-rules"""
        body = await read_json_object(request)
        body.pop("id", None)
        body.pop("created_at", None)
        rule = await self.services.rules.create(AlertRule.model_validate(body))
        logger.info(f"Alert rule {rule.id} created: {rule.metric} {rule.comparison.value} {rule.threshold}")
        return json_response({"rule_id": rule.id}, status=201)

    async def list_rules(self, request: web.Request) -> web.Response:
        """GET /api/alert-rules"""
        rules = await self.services.rules.list_rules(newest_first=True)
        return json_response({"rules": rules})

    async def create_workflow(self, request: web.Request) -> web.Response:
        """POST /api/workflows"""
        body = await read_json_object(request)
        workflow, test_result = await self.services.engine.create_workflow(
            WorkflowCreate.model_validate(body)
        )
        return json_response(
            {"workflow_id": workflow.id, "test_result": test_result},
            status=201,
        )

    async def list_workflows(self, request: web.Request) -> web.Response:
        """GET /api/workflows"""
        workflows = await self.services.workflows.list_workflows(
            limit=query_int(request, "limit", 100, MAX_PAGE_SIZE),
            offset=query_int(request, "offset", 0),
        )
        return json_response(
            {"workflows": [w.model_dump(mode="json", exclude={"actions"}) for w in workflows]}
        )

    async def get_workflow(self, request: web.Request) -> web.Response:
        """GET /api/workflows/{id}"""
        workflow_id = path_id(request)
        workflow = await self.services.workflows.get_by_id(workflow_id)
        if workflow is None:
            raise NotFoundError(f"Workflow {workflow_id} not found")
        return json_response(workflow)

    async def delete_workflow(self, request: web.Request) -> web.Response:
        """DELETE /api/workflows/{id}"""
        workflow_id = path_id(request)
        if not await self.services.workflows.delete(workflow_id):
            raise NotFoundError(f"Workflow {workflow_id} not found")
        logger.info(f"Workflow {workflow_id} deleted")
        return web.Response(status=204)

    async def test_workflow(self, request: web.Request) -> web.Response:
        """
        POST /api/workflows/test

        请求体: {"workflow_id": 1, "test_event": {...}}
        """
        body = await read_json_object(request)
        workflow_id = body.get("workflow_id")
        if not isinstance(workflow_id, int) or isinstance(workflow_id, bool):
            raise RequestError("workflow_id is required and must be an integer")

        test_event = body.get("test_event")
        if test_event is not None and not isinstance(test_event, dict):
            raise RequestError("test_event must be a JSON object")

        outcomes = await self.services.engine.test(workflow_id, test_event)
        return json_response({"result": outcomes})

    async def submit_event(self, request: web.Request) -> web.Response:
        """POST /api/events"""
        body = await read_json_object(request)
        event = Event.model_validate(body)
        results = await self.services.engine.submit(event)
        return json_response(
            {
                "processed": len(results),
                "results": [
                    {
                        "workflow_id": r.workflow_id,
                        "workflow_name": r.workflow_name,
                        "log_id": r.log_id,
                        "result": r.outcomes,
                    }
                    for r in results
                ],
            },
            status=202,
        )

    async def list_logs(self, request: web.Request) -> web.Response:
        """GET /api/workflow-logs"""
        raw_workflow_id = request.query.get("workflow_id")
        workflow_id = query_int(request, "workflow_id", 0) if raw_workflow_id else None
        logs = await self.services.logs.list_logs(
            workflow_id=workflow_id,
            limit=query_int(request, "limit", self.services.settings.workflow_log_limit, MAX_PAGE_SIZE),
            offset=query_int(request, "offset", 0),
        )
        return json_response({"logs": logs})


def setup_routes(app: web.Application, api: AlertFlowAPI) -> None:
    """注册路由"""
    app.router.add_get("/healthz", api.health)
    app.router.add_get("/metrics", api.metrics)

    app.router.add_post("/api/ingest", api.ingest)
    app.router.add_post("/api/alerts", api.raise_alert)
    app.router.add_get("/api/alerts", api.list_alerts)
    app.router.add_post("/api/alert-rules", api.create_rule)
    app.router.add_get("/api/alert-rules", api.list_rules)

    app.router.add_post("/api/workflows/test", api.test_workflow)
    app.router.add_post("/api/workflows", api.create_workflow)
    app.router.add_get("/api/workflows", api.list_workflows)
    app.router.add_get("/api/workflows/{id}", api.get_workflow)
    app.router.add_delete("/api/workflows/{id}", api.delete_workflow)
    app.router.add_post("/api/events", api.submit_event)
    app.router.add_get("/api/workflow-logs", api.list_logs)


def create_app(settings: Optional[Settings] = None) -> web.Application:
    """
    创建 HTTP 应用

    服务在应用启动时初始化，关闭时释放；可通过 app[SERVICES_KEY] 访问。

    Args:
        settings: 应用配置，缺省使用全局配置

    Returns:
        aiohttp 应用
    """
    settings = settings or get_settings()
    services = AlertFlowServices(settings)

    app = web.Application(middlewares=[error_middleware])
    app[SERVICES_KEY] = services
    setup_routes(app, AlertFlowAPI(services))

    async def services_ctx(app: web.Application) -> AsyncIterator[None]:
        await services.start()
        yield
        await services.close()

    app.cleanup_ctx.append(services_ctx)
    return app
