"""
Notification Service — 通知オーケストレーター

ドメインイベント 1 件ごとに次の状態を進める:

  received → parsed → recipient-resolved → delivered
      │         │              │
      └─────────┴──────────────┴──▶ dropped(reason)

- parse_error    : ペイロードを復元できない
- no_recipient   : 宛先ユーザーがいない（book.created など）
- lookup_failed  : User Service への問い合わせに失敗
- no_template    : メールの雛形がない
- send_failed    : メール送信に失敗

どの失敗も例外として外へは出さず、ログを残して dropped で終える。再試行はしない。
イベント間で状態は持たない（結果の件数だけを数える）。
"""

import logging
from collections import Counter
from dataclasses import dataclass

from bookswap.core.errors import BookSwapError
from bookswap.core.events import decode_event

from .mailer import EmailSink
from .messages import carried_email, compose, recipient_id
from .user_client import UserDirectory

logger = logging.getLogger(__name__)

DELIVERED = "delivered"
DROPPED = "dropped"


@dataclass(frozen=True)
class Outcome:
    subject: str
    state: str
    reason: str | None = None
    recipient: str | None = None


class Notifier:
    def __init__(self, users: UserDirectory, sink: EmailSink) -> None:
        self.users = users
        self.sink = sink
        self.stats: Counter[str] = Counter()

    async def handle(self, subject: str, payload: str) -> Outcome:
        """バスのハンドラ。何が起きても例外は送出しない。"""
        self.stats["received"] += 1
        try:
            return await self._process(subject, payload)
        except Exception:
            logger.exception("Unexpected failure handling %s", subject)
            return self._drop(subject, "internal_error")

    async def _process(self, subject: str, payload: str) -> Outcome:
        # received → parsed
        try:
            event = decode_event(subject, payload)
        except BookSwapError as e:
            return self._drop(subject, "parse_error", e)

        # parsed → recipient-resolved
        to = carried_email(event)
        if to is None:
            user_id = recipient_id(subject, event)
            if user_id is None:
                return self._drop(subject, "no_recipient")
            try:
                user = await self.users.get_user(user_id)
            except BookSwapError as e:
                return self._drop(subject, "lookup_failed", e)
            to = user["email"]

        message = compose(subject, event, to)
        if message is None:
            return self._drop(subject, "no_template")

        # recipient-resolved → delivered
        try:
            await self.sink.send(message)
        except BookSwapError as e:
            return self._drop(subject, "send_failed", e)

        self.stats[DELIVERED] += 1
        logger.info("Delivered %s notification to %s", subject, to)
        return Outcome(subject, DELIVERED, recipient=to)

    def _drop(self, subject: str, reason: str, error: Exception | None = None) -> Outcome:
        self.stats[DROPPED] += 1
        self.stats[f"{DROPPED}:{reason}"] += 1
        if error is not None:
            logger.warning("Dropped %s notification (%s): %s", subject, reason, error)
        else:
            logger.warning("Dropped %s notification (%s)", subject, reason)
        return Outcome(subject, DROPPED, reason=reason)

    def snapshot(self) -> dict[str, int]:
        return dict(self.stats)
