"""Exchange Service — エンティティとリクエストモデル"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from bookswap.core.errors import InvalidArgument


class OfferStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"

    @classmethod
    def parse(cls, raw: str) -> "OfferStatus":
        try:
            return cls(raw.strip().upper())
        except ValueError:
            raise InvalidArgument(f"invalid offer status: {raw!r}") from None


class ExchangeOffer(BaseModel):
    """
    交換オファー

    owner が offered_book_ids を差し出し、counterparty の requested_book_ids と交換する。
    PENDING から ACCEPTED / DECLINED へは一度だけ遷移する。
    """

    id: str
    owner_id: str
    counterparty_id: str
    offered_book_ids: list[str]
    requested_book_ids: list[str]
    status: OfferStatus
    created_at: datetime
    updated_at: datetime


# ── Request Models ───────────────────────────────


class CreateOfferRequest(BaseModel):
    owner_id: str
    counterparty_id: str
    offered_book_ids: list[str]
    requested_book_ids: list[str]


class AcceptOfferRequest(BaseModel):
    requester_id: str


class UpdateOfferRequest(BaseModel):
    offered_book_ids: list[str] | None = None
    requested_book_ids: list[str] | None = None


class OfferBookRequest(BaseModel):
    book_id: str
