"""
通知渠道模块

告警和工作流动作通过通知渠道对外发送消息。

Classes:
    Notification: 通知内容
    NotificationChannel: 通知渠道抽象基类
    LogChannel: 写入日志的渠道，总是可用
    WebhookChannel: HTTP Webhook 渠道 (邮件/短信/ITSM 网关)
    EmailChannel: SMTP 邮件渠道
"""

import asyncio
import json
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import aiohttp
from loguru import logger

from ..storage.models import Alert

if TYPE_CHECKING:
    from ..config.settings import Settings


@dataclass
class Notification:
    """
    通知内容

    Attributes:
        subject: 标题
        body: 正文
        payload: 结构化负载，Webhook 渠道按 JSON 发送
    """

    subject: str
    body: str
    payload: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_alert(cls, alert: Alert, channel: Optional[str] = None) -> "Notification":
        """根据告警生成通知"""
        subject = f"Alert: {alert.metric} on {alert.device_id}"
        body = (
            f"Device {alert.device_id} metric {alert.metric}={alert.value} "
            f"breached threshold {alert.threshold}"
        )
        if alert.description:
            body += f"\n{alert.description}"
        if alert.suggestion:
            body += f"\nSuggested remediation: {alert.suggestion}"

        payload = alert.model_dump(mode="json")
        payload["channel"] = channel
        return cls(subject=subject, body=body, payload=payload)


class NotificationChannel(ABC):
    """通知渠道抽象基类"""

    name: str = "channel"

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """
        发送通知

        Args:
            notification: 通知内容

        Returns:
            发送是否成功
        """
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """检查渠道是否已配置"""
        pass

    async def close(self) -> None:
        """释放渠道资源"""
        return None


class LogChannel(NotificationChannel):
    """日志渠道，把通知写入应用日志"""

    def __init__(self, name: str = "log"):
        self.name = name

    def is_configured(self) -> bool:
        return True

    async def send(self, notification: Notification) -> bool:
        headline, *details = notification.body.splitlines() or [notification.subject]
        logger.warning(f"ALERT: {headline}")
        for line in details:
            logger.warning(line)
        return True


class WebhookChannel(NotificationChannel):
    """
    Webhook 通知渠道

    Attributes:
        name: 渠道名称
        url: Webhook URL
        headers: 请求头
        timeout: 超时时间（秒）
    """

    def __init__(
        self,
        name: str,
        url: Optional[str],
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
    ):
        self.name = name
        self.url = url
        self.headers = headers or {"Content-Type": "application/json"}
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def is_configured(self) -> bool:
        """检查是否已配置"""
        return bool(self.url)

    async def _get_session(self) -> aiohttp.ClientSession:
        """获取 aiohttp session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        """关闭 session"""
        if self._session:
            await self._session.close()
            self._session = None

    async def send(self, notification: Notification) -> bool:
        """发送 Webhook 通知"""
        if not self.is_configured():
            logger.warning(f"Webhook channel '{self.name}' not configured")
            return False

        try:
            session = await self._get_session()
            payload = dict(notification.payload)
            payload.setdefault("subject", notification.subject)
            payload.setdefault("message", notification.body)

            async with session.post(
                self.url,
                json=payload,
                headers=self.headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if 200 <= response.status < 300:
                    logger.info(f"Webhook '{self.name}' delivered: {notification.subject}")
                    return True
                logger.error(f"Webhook '{self.name}' returned status {response.status}")
                return False

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"Failed to call webhook '{self.name}': {e!r}")
            return False


class EmailChannel(NotificationChannel):
    """
    SMTP 邮件通知渠道

    Attributes:
        smtp_host: SMTP 服务器地址
        smtp_port: SMTP 端口
        smtp_user: SMTP 用户名
        smtp_password: SMTP 密码
        from_addr: 发件人地址
        to_addrs: 收件人地址列表
        use_tls: 是否使用 TLS
        timeout: 连接超时（秒）
    """

    def __init__(
        self,
        smtp_host: Optional[str],
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_addr: str = "",
        to_addrs: Optional[List[str]] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
        name: str = "smtp",
    ):
        self.name = name
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_addr = from_addr or smtp_user
        self.to_addrs = to_addrs or []
        self.use_tls = use_tls
        self.timeout = timeout

    def is_configured(self) -> bool:
        """检查是否已配置"""
        return bool(self.smtp_host and self.to_addrs)

    def build_message(self, notification: Notification) -> MIMEMultipart:
        """构造邮件"""
        msg = MIMEMultipart("alternative")
        msg["Subject"] = notification.subject
        msg["From"] = self.from_addr
        msg["To"] = ", ".join(self.to_addrs)

        rows = "".join(
            f"<tr><td><b>{key}:</b></td><td>{value}</td></tr>"
            for key, value in notification.payload.items()
        )
        html_content = f"""
<html>
<body>
<h2>{notification.subject}</h2>
<p>{notification.body}</p>
<table>{rows}</table>
</body>
</html>
        """.strip()

        text_content = notification.body
        if notification.payload:
            text_content += f"\n\n{json.dumps(notification.payload, default=str)}"

        msg.attach(MIMEText(text_content, "plain"))
        msg.attach(MIMEText(html_content, "html"))
        return msg

    async def send(self, notification: Notification) -> bool:
        """发送邮件通知"""
        if not self.is_configured():
            logger.warning("Email channel not configured")
            return False

        msg = self.build_message(notification)

        def send_email():
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.smtp_user and self.smtp_password:
                    server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.from_addr, self.to_addrs, msg.as_string())

        try:
            await asyncio.get_running_loop().run_in_executor(None, send_email)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email notification: {e}")
            return False

        logger.info(f"Email notification sent: {notification.subject}")
        return True


def build_channels(settings: "Settings") -> Dict[str, NotificationChannel]:
    """
    根据配置创建通知渠道

    日志渠道总是存在；Webhook 与 SMTP 渠道仅在配置了地址时创建。

    Args:
        settings: 应用配置

    Returns:
        渠道名称到渠道实例的映射
    """
    channels: Dict[str, NotificationChannel] = {"log": LogChannel()}

    webhooks = {
        "email": settings.email_webhook_url,
        "sms": settings.sms_webhook_url,
        "itsm": settings.itsm_webhook_url,
    }
    for name, url in webhooks.items():
        if url:
            channels[name] = WebhookChannel(name, url, timeout=settings.notification_timeout)

    if settings.smtp_host:
        channels["smtp"] = EmailChannel(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password,
            from_addr=settings.smtp_from,
            to_addrs=settings.smtp_recipients,
            timeout=settings.notification_timeout,
        )

    logger.info(f"Notification channels: {', '.join(channels)}")
    return channels
