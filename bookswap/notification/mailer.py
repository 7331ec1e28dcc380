"""
Notification Service — メール送信 (Email Sink)

SmtpEmailSink   : smtplib で送る。ブロッキング I/O なのでワーカースレッドで実行する
LoggingEmailSink: 送らずにログへ出す（EMAIL_BACKEND=log、ローカル開発用）
"""

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText
from typing import Protocol

from bookswap.core.config import Settings
from bookswap.core.errors import DownstreamUnavailable

from .messages import OutgoingEmail

logger = logging.getLogger(__name__)


class EmailSink(Protocol):
    async def send(self, message: OutgoingEmail) -> None: ...


class SmtpEmailSink:
    """
    SMTP でメールを送る。

    ユーザー名が設定されていれば STARTTLS してからログインする。
    送信の失敗は DownstreamUnavailable として送出する。
    """

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.timeout = timeout

    async def send(self, message: OutgoingEmail) -> None:
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as e:
            raise DownstreamUnavailable(
                f"smtp {self.host}:{self.port} failed: {e}"
            ) from e

    def _send(self, message: OutgoingEmail) -> None:
        msg = MIMEText(message.body, "plain", "utf-8")
        msg["Subject"] = message.subject
        msg["From"] = self.sender
        msg["To"] = message.to

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.username:
                server.starttls()
                server.login(self.username, self.password)
            server.send_message(msg)


class LoggingEmailSink:
    async def send(self, message: OutgoingEmail) -> None:
        logger.info(
            "Email to %s: %s | %s", message.to, message.subject, message.body.replace("\n", " ")
        )


def build_sink(settings: Settings) -> EmailSink:
    if settings.email_backend == "log":
        return LoggingEmailSink()
    return SmtpEmailSink(
        settings.smtp_host,
        settings.smtp_port,
        settings.sender_address,
        settings.smtp_user,
        settings.smtp_password,
        timeout=settings.downstream_timeout,
    )
