"""
Order Service — FastAPI エントリーポイント

Command (POST/PATCH/DELETE) と Query (GET) のエンドポイントを分けてある。
"""

from fastapi import APIRouter, FastAPI, Request

from bookswap.core.http import install_error_handlers
from bookswap.core.runtime import ServiceRuntime, serve, service_lifespan

from . import commands, queries
from .models import CreateOrderRequest, OrderBookRequest, UpdateOrderRequest
from .repository import OrderRepository

SERVICE = "order-service"

router = APIRouter()


async def setup(app: FastAPI, rt: ServiceRuntime) -> None:
    app.state.orders = OrderRepository(rt.database, rt.cache, rt.tasks)
    app.state.emitter = rt.emitter


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/orders", status_code=201)
async def cmd_create_order(req: CreateOrderRequest, request: Request):
    """注文作成コマンド"""
    state = request.app.state
    return await commands.create_order(state.orders, state.emitter, req)


@router.post("/orders/{order_id}/cancel")
async def cmd_cancel_order(order_id: str, request: Request):
    """注文キャンセルコマンド"""
    return await commands.cancel_order(request.app.state.orders, order_id)


@router.post("/orders/{order_id}/return")
async def cmd_return_order(order_id: str, request: Request):
    """返却コマンド（order.completed を発行）"""
    state = request.app.state
    return await commands.return_order(state.orders, state.emitter, order_id)


@router.patch("/orders/{order_id}")
async def cmd_update_order(order_id: str, req: UpdateOrderRequest, request: Request):
    return await commands.update_order(request.app.state.orders, order_id, req)


@router.post("/orders/{order_id}/books")
async def cmd_add_book(order_id: str, req: OrderBookRequest, request: Request):
    return await commands.add_book(request.app.state.orders, order_id, req.book_id)


@router.delete("/orders/{order_id}/books/{book_id}")
async def cmd_remove_book(order_id: str, book_id: str, request: Request):
    return await commands.remove_book(request.app.state.orders, order_id, book_id)


@router.delete("/orders/{order_id}")
async def cmd_delete_order(order_id: str, request: Request):
    state = request.app.state
    return await commands.delete_order(state.orders, state.emitter, order_id)


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/orders")
async def query_list_orders(request: Request, status: str | None = None):
    """全注文。?status= で状態別に絞り込む"""
    repo = request.app.state.orders
    if status is not None:
        return await queries.list_by_status(repo, status)
    return await queries.list_all(repo)


@router.get("/orders/user/{user_id}")
async def query_user_orders(user_id: str, request: Request):
    return await queries.list_by_user(request.app.state.orders, user_id)


@router.get("/orders/{order_id}")
async def query_get_order(order_id: str, request: Request):
    return await queries.get_order(request.app.state.orders, order_id)


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE}


def create_app(runtime: ServiceRuntime | None = None) -> FastAPI:
    app = FastAPI(title="Order Service", lifespan=service_lifespan(SERVICE, setup, runtime))
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    serve(app)
