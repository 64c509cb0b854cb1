"""
配置管理模块 - 使用 Pydantic 进行配置管理
"""

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用程序配置"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/alertflow.db",
        description="数据库连接URL"
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="HTTP 服务监听地址"
    )
    api_port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="HTTP 服务端口"
    )

    worker_count: int = Field(
        default=4,
        ge=1,
        le=64,
        description="后台任务工作协程数"
    )
    queue_size: int = Field(
        default=1000,
        ge=1,
        description="后台任务队列容量"
    )

    notification_timeout: float = Field(
        default=10.0,
        gt=0,
        description="外部通知调用超时(秒)"
    )
    email_webhook_url: Optional[str] = Field(
        default=None,
        description="邮件 Webhook URL"
    )
    sms_webhook_url: Optional[str] = Field(
        default=None,
        description="短信 Webhook URL"
    )
    itsm_webhook_url: Optional[str] = Field(
        default=None,
        description="ITSM 工单 Webhook URL"
    )

    smtp_host: Optional[str] = Field(default=None, description="SMTP 服务器地址")
    smtp_port: int = Field(default=587, description="SMTP 端口")
    smtp_user: str = Field(default="", description="SMTP 用户名")
    smtp_password: str = Field(default="", description="SMTP 密码")
    smtp_from: str = Field(default="", description="发件人地址")
    smtp_to: str = Field(default="", description="收件人地址(逗号分隔)")

    alert_event_type: str = Field(
        default="alert.raised",
        min_length=1,
        description="告警合成事件类型"
    )
    synthesize_alert_events: bool = Field(
        default=True,
        description="是否将告警转换为工作流事件"
    )
    dedup_window_seconds: float = Field(
        default=0.0,
        ge=0,
        description="告警去重时间窗口(秒)，0 表示不去重"
    )
    workflow_log_limit: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="审计日志默认返回条数"
    )

    log_level: str = Field(
        default="INFO",
        description="日志级别"
    )
    log_file: str = Field(
        default="./logs/alertflow.log",
        description="日志文件路径"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @property
    def smtp_recipients(self) -> list[str]:
        """解析收件人列表"""
        return [addr.strip() for addr in self.smtp_to.split(",") if addr.strip()]


class DevelopmentSettings(Settings):
    """开发环境配置"""

    log_level: str = "DEBUG"


class ProductionSettings(Settings):
    """生产环境配置"""

    log_level: str = "WARNING"


class TestingSettings(Settings):
    """测试环境配置"""

    database_url: str = "sqlite+aiosqlite:///./data/test_alertflow.db"
    log_level: str = "DEBUG"
    synthesize_alert_events: bool = False


@lru_cache()
def get_settings() -> Settings:
    """获取配置实例 (单例模式)"""
    env = os.getenv("ENVIRONMENT", "development").lower()

    if env == "production":
        return ProductionSettings()
    elif env == "testing":
        return TestingSettings()
    else:
        return DevelopmentSettings()


def clear_settings_cache() -> None:
    """清除配置缓存"""
    get_settings.cache_clear()
