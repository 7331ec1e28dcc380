"""Order Service — エンティティとリクエストモデル"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from bookswap.core.errors import InvalidArgument


class OrderStatus(str, Enum):
    CREATED = "Created"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"

    @classmethod
    def parse(cls, raw: str) -> "OrderStatus":
        value = raw.strip().lower()
        for status in cls:
            if status.value.lower() == value:
                return status
        raise InvalidArgument(f"invalid order status: {raw!r}")


class Order(BaseModel):
    """
    注文

    Created で作成され、Cancelled か Returned へ一度だけ遷移する。
    本の追加・削除は Created の間だけ許される。
    """

    id: str
    user_id: str
    book_ids: list[str]
    status: OrderStatus
    created_at: datetime
    updated_at: datetime


# ── Request Models ───────────────────────────────


class CreateOrderRequest(BaseModel):
    user_id: str
    book_ids: list[str]


class UpdateOrderRequest(BaseModel):
    book_ids: list[str]


class OrderBookRequest(BaseModel):
    book_id: str
