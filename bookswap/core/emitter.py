"""
イベント発行 (Event Emitter)

書き込みが成功した後に呼ばれ、ドメインイベントを決まったサブジェクトに発行する。
発行の失敗はログに記録するだけで、書き込み自体は取り消さない。
"""

import logging

from .bus import EventBus
from .errors import BookSwapError
from .events import DomainEvent, encode_event

logger = logging.getLogger(__name__)


class EventEmitter:
    def __init__(self, bus: EventBus, service: str) -> None:
        self.bus = bus
        self.service = service

    async def emit(self, subject: str, event: DomainEvent) -> bool:
        """イベントを発行する。失敗しても例外は送出せず False を返す。"""
        try:
            payload = encode_event(subject, event)
            await self.bus.publish(subject, payload)
        except BookSwapError as e:
            logger.warning(
                "Failed to publish %s from %s: %s", subject, self.service, e
            )
            return False
        except Exception:
            logger.exception("Unexpected error publishing %s from %s", subject, self.service)
            return False
        logger.info("Published %s from %s", subject, self.service)
        return True
