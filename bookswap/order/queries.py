"""Order Service — クエリハンドラ (Read 側)"""

from bookswap.core.ids import parse_id

from .models import Order, OrderStatus
from .repository import OrderRepository


async def get_order(repo: OrderRepository, order_id: str) -> Order:
    return await repo.get(parse_id(order_id, "order_id"))


async def list_by_user(repo: OrderRepository, user_id: str) -> list[Order]:
    return await repo.list_by_user(parse_id(user_id, "user_id"))


async def list_all(repo: OrderRepository) -> list[Order]:
    return await repo.list_all()


async def list_by_status(repo: OrderRepository, status: str) -> list[Order]:
    return await repo.list_by_status(OrderStatus.parse(status))
