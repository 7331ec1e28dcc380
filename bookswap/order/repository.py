"""
Order Service — キャッシュ付きリポジトリ

キー:
  order:<id>                単一の注文
  orders:all                全件
  user_orders:<uid>         ユーザーの注文
  orders:status:<s>         状態別
"""

from bookswap.core.cache import FILTER_LIST_TTL, VOLATILE_LIST_TTL
from bookswap.core.repository import CachedRepository
from bookswap.core.store import Database

from .models import Order, OrderStatus

ALL_KEY = "orders:all"


def user_orders_key(user_id: str) -> str:
    return f"user_orders:{user_id}"


def status_key(status: OrderStatus) -> str:
    return f"orders:status:{status.value}"


class OrderRepository(CachedRepository[Order]):
    model = Order
    entity_prefix = "order"
    touch = "updated_at"

    def __init__(self, db: Database, cache, tasks) -> None:
        super().__init__(db.collection("orders"), cache, tasks)

    def list_keys(self, order: Order) -> list[str]:
        return [ALL_KEY, user_orders_key(order.user_id), status_key(order.status)]

    async def list_all(self) -> list[Order]:
        return await self.cached_list(ALL_KEY, self.collection.find, VOLATILE_LIST_TTL)

    async def list_by_user(self, user_id: str) -> list[Order]:
        return await self.cached_list(
            user_orders_key(user_id),
            lambda: self.collection.find({"user_id": user_id}),
            VOLATILE_LIST_TTL,
        )

    async def list_by_status(self, status: OrderStatus) -> list[Order]:
        return await self.cached_list(
            status_key(status),
            lambda: self.collection.find({"status": status.value}),
            FILTER_LIST_TTL,
        )

    async def transition(self, order_id: str, target: OrderStatus) -> Order:
        """Created からの一度きりの遷移。Created でなければ InvalidTransition。"""
        return await self.update(
            order_id,
            set_fields={"status": target.value},
            expect={"status": OrderStatus.CREATED.value},
        )
