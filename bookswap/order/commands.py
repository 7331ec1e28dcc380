"""
Order Service — コマンドハンドラ (Write 側)

イベント:
  create → orders.created
  return → order.completed
  delete → order.deleted（削除前の値で発行）
"""

from bookswap.core.emitter import EventEmitter
from bookswap.core.errors import Conflict, InvalidArgument
from bookswap.core.events import OrderCompleted, OrderCreated, OrderDeleted
from bookswap.core.ids import parse_id, parse_ids
from bookswap.core.store import utcnow_iso
from bookswap.core.subjects import Subjects

from .models import CreateOrderRequest, Order, OrderStatus, UpdateOrderRequest
from .repository import OrderRepository

CREATED_ONLY = {"status": OrderStatus.CREATED.value}


async def create_order(
    repo: OrderRepository, emitter: EventEmitter, req: CreateOrderRequest
) -> Order:
    """
    注文作成コマンド

    1. Created で保存
    2. orders.created を発行 → Notification Service が確認メールを送る
    """
    user_id = parse_id(req.user_id, "user_id")
    book_ids = _book_list(req.book_ids)

    now = utcnow_iso()
    order = await repo.create(
        {
            "user_id": user_id,
            "book_ids": book_ids,
            "status": OrderStatus.CREATED.value,
            "created_at": now,
            "updated_at": now,
        }
    )

    await emitter.emit(
        Subjects.ORDER_CREATED,
        OrderCreated(order_id=order.id, user_id=order.user_id, book_ids=order.book_ids),
    )
    return order


async def cancel_order(repo: OrderRepository, order_id: str) -> Order:
    return await repo.transition(parse_id(order_id, "order_id"), OrderStatus.CANCELLED)


async def return_order(repo: OrderRepository, emitter: EventEmitter, order_id: str) -> Order:
    """本の返却。Returned へ遷移して order.completed を発行する。"""
    order = await repo.transition(parse_id(order_id, "order_id"), OrderStatus.RETURNED)
    await emitter.emit(
        Subjects.ORDER_COMPLETED,
        OrderCompleted(order_id=order.id, user_id=order.user_id, book_ids=order.book_ids),
    )
    return order


async def delete_order(repo: OrderRepository, emitter: EventEmitter, order_id: str) -> Order:
    order = await repo.delete(parse_id(order_id, "order_id"))
    await emitter.emit(
        Subjects.ORDER_DELETED,
        OrderDeleted(order_id=order.id, user_id=order.user_id, book_ids=order.book_ids),
    )
    return order


async def update_order(
    repo: OrderRepository, order_id: str, req: UpdateOrderRequest
) -> Order:
    """本のリストを差し替える（Created のみ）。"""
    return await repo.update(
        parse_id(order_id, "order_id"),
        set_fields={"book_ids": _book_list(req.book_ids)},
        expect=CREATED_ONLY,
    )


async def add_book(repo: OrderRepository, order_id: str, book_id: str) -> Order:
    order_id = parse_id(order_id, "order_id")
    book_id = parse_id(book_id, "book_id")
    order = await repo.fetch(order_id)
    if book_id in order.book_ids:
        raise Conflict(f"book {book_id} is already in order {order_id}")
    return await repo.update(order_id, push={"book_ids": book_id}, expect=CREATED_ONLY)


async def remove_book(repo: OrderRepository, order_id: str, book_id: str) -> Order:
    order_id = parse_id(order_id, "order_id")
    book_id = parse_id(book_id, "book_id")
    order = await repo.fetch(order_id)
    if book_id not in order.book_ids:
        raise InvalidArgument(f"book {book_id} is not in order {order_id}")
    if len(order.book_ids) == 1:
        raise InvalidArgument("an order must keep at least one book")
    return await repo.update(order_id, pull={"book_ids": book_id}, expect=CREATED_ONLY)


def _book_list(raws: list[str]) -> list[str]:
    ids = parse_ids(raws, "book_ids")
    if not ids:
        raise InvalidArgument("book_ids must not be empty")
    if len(set(ids)) != len(ids):
        raise InvalidArgument("book_ids contains duplicates")
    return ids
