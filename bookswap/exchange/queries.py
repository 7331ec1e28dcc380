"""Exchange Service — クエリハンドラ (Read 側)"""

from bookswap.core.ids import parse_id

from .models import ExchangeOffer, OfferStatus
from .repository import ExchangeRepository


async def get_offer(repo: ExchangeRepository, offer_id: str) -> ExchangeOffer:
    return await repo.get(parse_id(offer_id, "offer_id"))


async def list_by_owner(repo: ExchangeRepository, owner_id: str) -> list[ExchangeOffer]:
    return await repo.list_by_owner(parse_id(owner_id, "owner_id"))


async def list_pending(repo: ExchangeRepository) -> list[ExchangeOffer]:
    return await repo.list_pending()


async def list_all(repo: ExchangeRepository) -> list[ExchangeOffer]:
    return await repo.list_all()


async def list_by_status(repo: ExchangeRepository, status: str) -> list[ExchangeOffer]:
    return await repo.list_by_status(OfferStatus.parse(status))
