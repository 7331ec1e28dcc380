"""
Exchange Service — キャッシュ付きリポジトリ

キー:
  offer:<id>                単一のオファー
  offers:all                全件
  offers:pending            PENDING のオファー
  offers:user:<uid>         ユーザーが出したオファー
  offers:status:<s>         状態別

状態遷移は expect={"status": "PENDING"} 付きの条件付き更新で行うので、
同時に accept と decline が来ても遷移するのは一方だけ。
"""

from bookswap.core.cache import FILTER_LIST_TTL, VOLATILE_LIST_TTL
from bookswap.core.repository import CachedRepository
from bookswap.core.store import Database

from .models import ExchangeOffer, OfferStatus

ALL_KEY = "offers:all"
PENDING_KEY = "offers:pending"


def user_offers_key(user_id: str) -> str:
    return f"offers:user:{user_id}"


def status_key(status: OfferStatus) -> str:
    return f"offers:status:{status.value}"


class ExchangeRepository(CachedRepository[ExchangeOffer]):
    model = ExchangeOffer
    entity_prefix = "offer"
    touch = "updated_at"

    def __init__(self, db: Database, cache, tasks) -> None:
        super().__init__(db.collection("exchange_offers"), cache, tasks)

    def list_keys(self, offer: ExchangeOffer) -> list[str]:
        return [
            ALL_KEY,
            PENDING_KEY,
            user_offers_key(offer.owner_id),
            user_offers_key(offer.counterparty_id),
            status_key(offer.status),
        ]

    async def list_all(self) -> list[ExchangeOffer]:
        return await self.cached_list(ALL_KEY, self.collection.find, VOLATILE_LIST_TTL)

    async def list_pending(self) -> list[ExchangeOffer]:
        return await self.cached_list(
            PENDING_KEY,
            lambda: self.collection.find({"status": OfferStatus.PENDING.value}),
            VOLATILE_LIST_TTL,
        )

    async def list_by_owner(self, owner_id: str) -> list[ExchangeOffer]:
        return await self.cached_list(
            user_offers_key(owner_id),
            lambda: self.collection.find({"owner_id": owner_id}),
            VOLATILE_LIST_TTL,
        )

    async def list_by_status(self, status: OfferStatus) -> list[ExchangeOffer]:
        return await self.cached_list(
            status_key(status),
            lambda: self.collection.find({"status": status.value}),
            FILTER_LIST_TTL,
        )

    async def transition(
        self, offer_id: str, target: OfferStatus
    ) -> ExchangeOffer:
        """PENDING からの一度きりの遷移。PENDING でなければ InvalidTransition。"""
        return await self.update(
            offer_id,
            set_fields={"status": target.value},
            expect={"status": OfferStatus.PENDING.value},
        )
