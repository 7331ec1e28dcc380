"""
Notification Service — バスの購読

全ドメインイベントのサブジェクトを購読し、受信したメッセージを Notifier に渡す。
購読ごとにワーカーが 1 つあり、メッセージはサブジェクトごとに受信順で処理される。
"""

import logging

from bookswap.core.bus import EventBus, Subscription
from bookswap.core.subjects import Subjects

from .notifier import Notifier

logger = logging.getLogger(__name__)


async def subscribe_all(bus: EventBus, notifier: Notifier) -> list[Subscription]:
    subscriptions = []
    for subject in Subjects.ALL:
        subscriptions.append(await bus.subscribe(subject, notifier.handle))
    logger.info("Notification handlers subscribed to %d subjects", len(subscriptions))
    return subscriptions
