"""
pytest配置和共享fixtures

提供测试所需的数据库、服务容器、记录型通知渠道和示例数据。
"""

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, List, Optional

import pytest
import pytest_asyncio

from alertflow.alerting.channels import Notification, NotificationChannel
from alertflow.config.settings import Settings
from alertflow.services import AlertFlowServices
from alertflow.storage.repository import Database


class RecordingChannel(NotificationChannel):
    """记录收到的通知，可模拟失败、异常和延迟"""

    def __init__(
        self,
        name: str = "recording",
        result: bool = True,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.sent: List[Notification] = []

    def is_configured(self) -> bool:
        return True

    async def send(self, notification: Notification) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.sent.append(notification)
        return self.result


@pytest_asyncio.fixture(scope="function")
async def test_db(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """创建临时文件SQLite数据库用于测试"""
    db = Database(db_path=f"sqlite+aiosqlite:///{tmp_path / 'alertflow_test.db'}")
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """测试配置"""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'alertflow_app.db'}",
        log_file=str(tmp_path / "alertflow.log"),
        worker_count=2,
        queue_size=100,
        notification_timeout=1.0,
        email_webhook_url=None,
        sms_webhook_url=None,
        itsm_webhook_url=None,
        smtp_host=None,
        synthesize_alert_events=True,
    )


@pytest_asyncio.fixture(scope="function")
async def services(test_settings: Settings) -> AsyncGenerator[AlertFlowServices, None]:
    """启动完整服务容器"""
    container = AlertFlowServices(test_settings)
    await container.start()
    yield container
    await container.close()


@pytest.fixture
def sample_telemetry_data() -> dict:
    """生成示例遥测样本数据"""
    return {
        "device_id": "srv-01",
        "timestamp": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc).isoformat(),
        "metrics": {"cpu": 92.5, "memory": 40.0, "disk": None},
    }


@pytest.fixture
def sample_rule_data() -> dict:
    """生成示例告警规则数据"""
    return {
        "metric": "cpu",
        "comparison": "gt",
        "threshold": 85,
        "channel": "email",
    }


@pytest.fixture
def disk_full_workflow_data() -> dict:
    """生成磁盘满工作流数据"""
    return {
        "name": "Disk cleanup",
        "event_type": "disk_full",
        "actions": [
            {"action_type": "run_script", "parameters": {"script": "cleanup.sh"}},
            {"action_type": "notify", "parameters": {"message": "disk cleaned"}},
        ],
    }
