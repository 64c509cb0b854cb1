"""
AlertFlow - 设备遥测告警与工作流自动化服务
主入口文件
"""

import asyncio
import json
import sys
from typing import Optional

import click
from aiohttp import web
from loguru import logger
from pydantic import ValidationError

from alertflow.api.app import create_app
from alertflow.config.settings import Settings, get_settings
from alertflow.services import AlertFlowServices
from alertflow.storage.models import AlertRule, Event
from alertflow.storage.repository import Database


def setup_logging(settings: Settings) -> None:
    """配置日志"""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
               "<level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
               "<level>{message}</level>"
    )
    logger.add(
        settings.log_file,
        rotation="10 MB",
        retention="7 days",
        level=settings.log_level,
        encoding="utf-8"
    )


@click.group()
@click.option("--env", type=str, default="development", help="运行环境")
@click.pass_context
def cli(ctx: click.Context, env: str) -> None:
    """告警与工作流自动化命令行工具"""
    import os
    os.environ["ENVIRONMENT"] = env

    settings = get_settings()
    setup_logging(settings)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings
    logger.debug(f"AlertFlow started in {env} mode")


@cli.command()
@click.option("--host", type=str, default=None, help="监听地址")
@click.option("--port", type=int, default=None, help="监听端口")
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]) -> None:
    """启动 HTTP 服务"""
    settings = ctx.obj["settings"]
    host = host or settings.api_host
    port = port or settings.api_port

    logger.info(f"Serving AlertFlow API on {host}:{port}")
    web.run_app(create_app(settings), host=host, port=port, print=None)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """初始化数据库"""
    settings = ctx.obj["settings"]

    async def init_db() -> None:
        db = Database(settings.database_url)
        await db.init()
        await db.close()
        logger.info("Database initialized successfully")

    asyncio.run(init_db())


@cli.group()
def rules() -> None:
    """管理告警规则"""


@rules.command("add")
@click.option("--metric", "-m", type=str, required=True, help="指标名称")
@click.option("--comparison", "-c", type=click.Choice(["gt", "lt"]), required=True,
              help="比较方式")
@click.option("--threshold", "-t", type=float, required=True, help="阈值")
@click.option("--channel", type=str, default="email", help="通知渠道")
@click.option("--suggestion", type=str, default=None, help="处理建议")
@click.option("--description", type=str, default=None, help="规则描述")
@click.pass_context
def rules_add(
    ctx: click.Context,
    metric: str,
    comparison: str,
    threshold: float,
    channel: str,
    suggestion: Optional[str],
    description: Optional[str],
) -> None:
    """创建告警规则"""
    settings = ctx.obj["settings"]

    try:
        rule = AlertRule(
            metric=metric,
            comparison=comparison,
            threshold=threshold,
            channel=channel,
            suggestion=suggestion,
            description=description,
        )
    except ValidationError as e:
        raise click.BadParameter(str(e)) from e

    async def add_rule() -> None:
        async with AlertFlowServices(settings) as services:
            created = await services.rules.create(rule)
            click.echo(f"Created rule {created.id}: {created.metric} {created.comparison.value} {created.threshold}")

    asyncio.run(add_rule())


@rules.command("list")
@click.pass_context
def rules_list(ctx: click.Context) -> None:
    """列出告警规则"""
    settings = ctx.obj["settings"]

    async def list_rules() -> None:
        async with AlertFlowServices(settings) as services:
            items = await services.rules.list_rules(newest_first=True)
            click.echo("\n=== 告警规则 ===")
            for rule in items:
                click.echo(
                    f"  [{rule.id}] {rule.metric} {rule.comparison.value} {rule.threshold} "
                    f"-> {rule.channel}"
                )
            click.echo(f"共 {len(items)} 条")

    asyncio.run(list_rules())


@cli.group()
def workflows() -> None:
    """管理工作流"""


@workflows.command("list")
@click.pass_context
def workflows_list(ctx: click.Context) -> None:
    """列出工作流"""
    settings = ctx.obj["settings"]

    async def list_workflows() -> None:
        async with AlertFlowServices(settings) as services:
            items = await services.workflows.list_workflows()
            click.echo("\n=== 工作流 ===")
            for workflow in items:
                actions = ", ".join(a.action_type for a in workflow.actions)
                click.echo(f"  [{workflow.id}] {workflow.name} ({workflow.event_type}): {actions}")
            click.echo(f"共 {len(items)} 个")

    asyncio.run(list_workflows())


@cli.command("submit-event")
@click.option("--type", "-t", "event_type", type=str, required=True, help="事件类型")
@click.option("--data", "-d", type=str, default="{}", help="事件负载 (JSON 对象)")
@click.pass_context
def submit_event(ctx: click.Context, event_type: str, data: str) -> None:
    """提交事件并执行匹配的工作流"""
    settings = ctx.obj["settings"]

    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="--data") from e
    if not isinstance(payload, dict):
        raise click.BadParameter("must be a JSON object", param_hint="--data")
    payload["event_type"] = event_type

    async def run_event() -> None:
        async with AlertFlowServices(settings) as services:
            results = await services.engine.submit(Event.model_validate(payload))
            click.echo(f"Processed {len(results)} workflow(s)")
            for result in results:
                click.echo(f"  [{result.workflow_id}] {result.workflow_name}")
                for outcome in result.outcomes:
                    click.echo(f"    {outcome.action}: {outcome.status.value} {outcome.message}")

    asyncio.run(run_event())


@cli.command()
@click.option("--limit", "-l", type=int, default=20, help="显示条数")
@click.option("--workflow-id", "-w", type=int, default=None, help="按工作流过滤")
@click.pass_context
def logs(ctx: click.Context, limit: int, workflow_id: Optional[int]) -> None:
    """查看工作流审计日志"""
    settings = ctx.obj["settings"]

    async def show_logs() -> None:
        async with AlertFlowServices(settings) as services:
            entries = await services.logs.list_logs(workflow_id=workflow_id, limit=limit)
            click.echo("\n=== 审计日志 ===")
            for entry in entries:
                statuses = ", ".join(f"{o.action}={o.status.value}" for o in entry.result)
                executed = entry.executed_at.isoformat() if entry.executed_at else "-"
                click.echo(f"  [{entry.id}] workflow={entry.workflow_id} {executed}: {statuses}")

    asyncio.run(show_logs())


if __name__ == "__main__":
    cli()
