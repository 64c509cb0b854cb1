"""
生成演示数据脚本

创建示例告警规则和工作流，并模拟若干设备上报遥测样本，
用于演示告警、通知和工作流审计日志。
"""

import asyncio
import random
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from loguru import logger

from alertflow.config.settings import get_settings
from alertflow.services import AlertFlowServices
from alertflow.storage.models import AlertRule, TelemetrySample, WorkflowCreate


# 配置日志
logger.remove()
logger.add(sys.stderr, level="INFO")


DEMO_RULES = [
    {"metric": "cpu", "comparison": "gt", "threshold": 85, "channel": "email"},
    {"metric": "memory", "comparison": "gt", "threshold": 90, "channel": "email"},
    {"metric": "disk", "comparison": "gt", "threshold": 92, "channel": "sms"},
    {"metric": "latency", "comparison": "gt", "threshold": 250, "channel": "email"},
    {"metric": "free_inodes", "comparison": "lt", "threshold": 5, "channel": "itsm"},
]

DEMO_WORKFLOWS = [
    {
        "name": "磁盘清理",
        "event_type": "alert.raised",
        "conditions": {"metric": "disk"},
        "actions": [
            {"action_type": "run_script", "parameters": {"script": "cleanup_tmp.sh"}},
            {"action_type": "notify", "parameters": {"message": "disk cleanup executed"}},
        ],
    },
    {
        "name": "CPU 过载处理",
        "event_type": "alert.raised",
        "conditions": {"type": "field", "field": "metric", "op": "in", "value": ["cpu", "memory"]},
        "actions": [
            {"action_type": "restart_service", "parameters": {"service": "worker"}},
            {"action_type": "create_ticket", "parameters": {"priority": "high"}},
        ],
    },
    {
        "name": "入侵隔离",
        "event_type": "intrusion_detected",
        "actions": [
            {"action_type": "isolate_device"},
            {"action_type": "send_notification", "parameters": {"message": "device isolated"}},
        ],
    },
]

DEVICES = [f"srv-{index:02d}" for index in range(1, 9)]


def generate_random_sample(device_id: str, index: int) -> TelemetrySample:
    """生成随机遥测样本"""
    metrics = {
        "cpu": round(random.uniform(10, 99), 1),
        "memory": round(random.uniform(20, 97), 1),
        "disk": round(random.uniform(40, 99), 1),
        "latency": round(random.uniform(5, 400), 1),
        "free_inodes": round(random.uniform(1, 40), 1),
    }

    # 随机缺失指标
    if random.random() > 0.8:
        metrics[random.choice(list(metrics))] = None

    return TelemetrySample(
        device_id=device_id,
        timestamp=datetime.now(timezone.utc) - timedelta(seconds=index * 30),
        metrics=metrics,
    )


async def generate_demo_data(num_samples: int = 50):
    """
    生成演示数据

    Args:
        num_samples: 上报样本数量
    """
    settings = get_settings()

    async with AlertFlowServices(settings) as services:
        logger.info(f"开始生成演示数据: {num_samples} 条样本")

        for rule_data in DEMO_RULES:
            rule = await services.rules.create(AlertRule.model_validate(rule_data))
            logger.debug(f"创建规则: {rule.metric} {rule.comparison.value} {rule.threshold}")

        for workflow_data in DEMO_WORKFLOWS:
            workflow, _ = await services.engine.create_workflow(
                WorkflowCreate.model_validate(workflow_data)
            )
            logger.debug(f"创建工作流: {workflow.name}")

        for i in range(num_samples):
            sample = generate_random_sample(random.choice(DEVICES), i)
            await services.ingest(sample)

            if (i + 1) % 10 == 0:
                logger.info(f"已上报 {i + 1}/{num_samples} 条样本")

        await services.pool.join()

        alert_count = await services.alerts.count_alerts()
        log_count = await services.logs.count_logs()

    logger.info("演示数据生成完成!")
    return alert_count, log_count


def main():
    """主函数"""
    import argparse

    parser = argparse.ArgumentParser(description="生成演示数据")
    parser.add_argument("--samples", "-s", type=int, default=50, help="样本数量")

    args = parser.parse_args()

    try:
        alert_count, log_count = asyncio.run(generate_demo_data(num_samples=args.samples))
        print("\n演示数据生成完成!")
        print(f"告警数: {alert_count}")
        print(f"工作流执行记录: {log_count}")
        print(f"数据库: {get_settings().database_url}")
        print("\n启动服务后可访问: http://localhost:8080/api/alerts")
    except Exception as e:
        logger.exception("生成数据失败")
        print(f"\n生成失败: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
