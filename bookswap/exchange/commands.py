"""
Exchange Service — コマンドハンドラ (Write 側)

オファーは PENDING で作成され、ACCEPTED か DECLINED へ一度だけ遷移する。
内容の変更（本の追加・削除・差し替え）も PENDING の間だけ許される。
"""

import asyncio

from bookswap.core.emitter import EventEmitter
from bookswap.core.errors import BookSwapError, Conflict, InvalidArgument, InvalidTransition
from bookswap.core.events import ExchangeAccepted, ExchangeCreated, ExchangeDeclined
from bookswap.core.ids import parse_id, parse_ids
from bookswap.core.store import utcnow_iso
from bookswap.core.subjects import Subjects

from .models import (
    CreateOfferRequest,
    ExchangeOffer,
    OfferStatus,
    UpdateOfferRequest,
)
from .repository import ExchangeRepository
from .settlement import SettlementSaga

PENDING_ONLY = {"status": OfferStatus.PENDING.value}


async def create_offer(
    repo: ExchangeRepository, emitter: EventEmitter, req: CreateOfferRequest
) -> ExchangeOffer:
    """
    オファー作成コマンド

    1. 参加者と本のリストを検証
    2. PENDING で保存
    3. exchange.created を発行（counterparty に通知される）
    """
    owner_id = parse_id(req.owner_id, "owner_id")
    counterparty_id = parse_id(req.counterparty_id, "counterparty_id")
    if owner_id == counterparty_id:
        raise InvalidArgument("owner and counterparty must differ")
    offered = _book_list(req.offered_book_ids, "offered_book_ids")
    requested = _book_list(req.requested_book_ids, "requested_book_ids")

    now = utcnow_iso()
    offer = await repo.create(
        {
            "owner_id": owner_id,
            "counterparty_id": counterparty_id,
            "offered_book_ids": offered,
            "requested_book_ids": requested,
            "status": OfferStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        }
    )

    await emitter.emit(
        Subjects.EXCHANGE_CREATED,
        ExchangeCreated(
            offer_id=offer.id,
            owner_id=offer.owner_id,
            counterparty_id=offer.counterparty_id,
        ),
    )
    return offer


async def accept_offer(
    repo: ExchangeRepository,
    emitter: EventEmitter,
    saga: SettlementSaga,
    offer_id: str,
    requester_id: str,
) -> ExchangeOffer:
    """
    オファー承認コマンド

    1. 承認できるのは PENDING のオファーの counterparty だけ
    2. 決済 Saga で本を受け渡す（失敗したら補償済みで DownstreamUnavailable、PENDING のまま）
    3. 条件付き更新で ACCEPTED へ遷移
       - 競合で遷移できなかったら決済を補償して InvalidTransition
    4. exchange.accepted を発行
    """
    offer_id = parse_id(offer_id, "offer_id")
    requester_id = parse_id(requester_id, "requester_id")

    offer = await repo.fetch(offer_id)
    if offer.status is not OfferStatus.PENDING:
        raise InvalidTransition(f"offer {offer_id} is already {offer.status.value}")
    if requester_id != offer.counterparty_id:
        raise InvalidArgument(f"user {requester_id} is not the counterparty of offer {offer_id}")

    completed = await saga.execute(offer)
    try:
        accepted = await repo.transition(offer_id, OfferStatus.ACCEPTED)
    except (BookSwapError, asyncio.CancelledError):
        await asyncio.shield(saga.compensate(completed))
        raise

    await emitter.emit(
        Subjects.EXCHANGE_ACCEPTED,
        ExchangeAccepted(
            offer_id=accepted.id, owner_id=accepted.owner_id, requester_id=requester_id
        ),
    )
    return accepted


async def decline_offer(
    repo: ExchangeRepository, emitter: EventEmitter, offer_id: str
) -> ExchangeOffer:
    declined = await repo.transition(parse_id(offer_id, "offer_id"), OfferStatus.DECLINED)
    await emitter.emit(
        Subjects.EXCHANGE_DECLINED,
        ExchangeDeclined(offer_id=declined.id, owner_id=declined.owner_id),
    )
    return declined


async def delete_offer(repo: ExchangeRepository, offer_id: str) -> ExchangeOffer:
    return await repo.delete(parse_id(offer_id, "offer_id"))


async def update_offer(
    repo: ExchangeRepository, offer_id: str, req: UpdateOfferRequest
) -> ExchangeOffer:
    """本のリストを差し替える（PENDING のみ）。"""
    offer_id = parse_id(offer_id, "offer_id")
    changes: dict[str, list[str]] = {}
    if req.offered_book_ids is not None:
        changes["offered_book_ids"] = _book_list(req.offered_book_ids, "offered_book_ids")
    if req.requested_book_ids is not None:
        changes["requested_book_ids"] = _book_list(
            req.requested_book_ids, "requested_book_ids"
        )
    if not changes:
        raise InvalidArgument("nothing to update")
    return await repo.update(offer_id, set_fields=changes, expect=PENDING_ONLY)


async def add_offered_book(
    repo: ExchangeRepository, offer_id: str, book_id: str
) -> ExchangeOffer:
    offer_id = parse_id(offer_id, "offer_id")
    book_id = parse_id(book_id, "book_id")
    offer = await repo.fetch(offer_id)
    if book_id in offer.offered_book_ids:
        raise Conflict(f"book {book_id} is already offered in {offer_id}")
    return await repo.update(
        offer_id, push={"offered_book_ids": book_id}, expect=PENDING_ONLY
    )


async def remove_offered_book(
    repo: ExchangeRepository, offer_id: str, book_id: str
) -> ExchangeOffer:
    offer_id = parse_id(offer_id, "offer_id")
    book_id = parse_id(book_id, "book_id")
    offer = await repo.fetch(offer_id)
    if book_id not in offer.offered_book_ids:
        raise InvalidArgument(f"book {book_id} is not offered in {offer_id}")
    if len(offer.offered_book_ids) == 1:
        raise InvalidArgument("an offer must keep at least one offered book")
    return await repo.update(
        offer_id, pull={"offered_book_ids": book_id}, expect=PENDING_ONLY
    )


def _book_list(raws: list[str], field: str) -> list[str]:
    ids = parse_ids(raws, field)
    if not ids:
        raise InvalidArgument(f"{field} must not be empty")
    if len(set(ids)) != len(ids):
        raise InvalidArgument(f"{field} contains duplicates")
    return ids
