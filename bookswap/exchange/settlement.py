"""
交換の決済 Saga — オファー承認時の本の受け渡し

オーケストレーション型の Saga:
  Exchange Service が User Library Service へのコマンド実行を順番に制御する。
  途中で失敗したら、完了済みのステップを逆順に打ち消す
  補償トランザクション(Compensating Transaction)を実行する。

  ┌──────────────────────────────────────────────────────────────┐
  │  offered_book_ids の各冊:                                    │
  │    owner から unassign → counterparty に assign              │
  │  requested_book_ids の各冊:                                  │
  │    counterparty から unassign → owner に assign              │
  │                                                              │
  │  失敗 → 完了済みステップを逆順に補償 → DownstreamUnavailable  │
  └──────────────────────────────────────────────────────────────┘
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from bookswap.core.errors import DownstreamUnavailable

from .models import ExchangeOffer

logger = logging.getLogger(__name__)


class LibraryClient(Protocol):
    async def assign(self, user_id: str, book_id: str) -> None: ...

    async def unassign(self, user_id: str, book_id: str) -> None: ...


class HttpLibraryClient:
    """User Library Service の assign / unassign を HTTP で呼ぶクライアント"""

    def __init__(self, base_url: str, client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client

    async def assign(self, user_id: str, book_id: str) -> None:
        await self._post("/library/assign", user_id, book_id)

    async def unassign(self, user_id: str, book_id: str) -> None:
        await self._post("/library/unassign", user_id, book_id)

    async def _post(self, path: str, user_id: str, book_id: str) -> None:
        try:
            resp = await self.client.post(
                f"{self.base_url}{path}",
                json={"user_id": user_id, "book_id": book_id},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            detail = _detail(e.response)
            raise DownstreamUnavailable(
                f"library {path} rejected ({e.response.status_code}): {detail}"
            ) from e
        except httpx.HTTPError as e:
            raise DownstreamUnavailable(f"library {path} failed: {e}") from e


def _detail(resp: httpx.Response) -> str:
    try:
        return str(resp.json().get("detail", resp.text))
    except ValueError:
        return resp.text


@dataclass(frozen=True)
class Step:
    action: str  # "assign" | "unassign"
    user_id: str
    book_id: str

    def inverse(self) -> "Step":
        action = "assign" if self.action == "unassign" else "unassign"
        return Step(action, self.user_id, self.book_id)


def plan(offer: ExchangeOffer) -> list[Step]:
    """オファーから決済ステップの列を組み立てる。"""
    steps: list[Step] = []
    for book_id in offer.offered_book_ids:
        steps.append(Step("unassign", offer.owner_id, book_id))
        steps.append(Step("assign", offer.counterparty_id, book_id))
    for book_id in offer.requested_book_ids:
        steps.append(Step("unassign", offer.counterparty_id, book_id))
        steps.append(Step("assign", offer.owner_id, book_id))
    return steps


class SettlementSaga:
    """決済 Saga のオーケストレーター"""

    def __init__(self, library: LibraryClient) -> None:
        self.library = library

    async def execute(self, offer: ExchangeOffer) -> list[Step]:
        """
        全ステップを実行し、完了したステップの列を返す。

        途中で失敗したら補償してから DownstreamUnavailable を送出する。
        キャンセルやそれ以外の例外でも補償してから、その例外をそのまま再送出する。
        補償は呼び出し元のキャンセルから保護する。
        """
        completed: list[Step] = []
        for step in plan(offer):
            try:
                await self._apply(step)
            except DownstreamUnavailable as e:
                logger.warning(
                    "Settlement of offer %s failed at %s %s/%s: %s",
                    offer.id, step.action, step.user_id, step.book_id, e,
                )
                await asyncio.shield(self.compensate(completed))
                raise DownstreamUnavailable(
                    f"settlement of offer {offer.id} failed: {e.message}"
                ) from e
            except (Exception, asyncio.CancelledError) as e:
                logger.warning(
                    "Settlement of offer %s interrupted at %s %s/%s: %r",
                    offer.id, step.action, step.user_id, step.book_id, e,
                )
                await asyncio.shield(self.compensate(completed))
                raise
            completed.append(step)
        logger.info("Settled offer %s (%d steps)", offer.id, len(completed))
        return completed

    async def compensate(self, completed: list[Step]) -> None:
        """完了済みステップを逆順に打ち消す。補償の失敗はログに残して続行する。"""
        for step in reversed(completed):
            undo = step.inverse()
            try:
                await self._apply(undo)
            except Exception as e:
                logger.error(
                    "Compensation %s %s/%s failed: %s",
                    undo.action, undo.user_id, undo.book_id, e,
                )

    async def _apply(self, step: Step) -> None:
        if step.action == "assign":
            await self.library.assign(step.user_id, step.book_id)
        else:
            await self.library.unassign(step.user_id, step.book_id)
