"""
Exchange Service — FastAPI エントリーポイント

ユーザー間の本の交換オファーを扱う。
承認 (accept) では決済 Saga が User Library Service を呼んで本を受け渡す。

┌──────────────────┐  assign / unassign  ┌──────────────────────┐
│ Exchange Service │ ─────── HTTP ──────▶ │ User Library Service │
└──────────────────┘                     └──────────────────────┘
"""

import httpx
from fastapi import APIRouter, FastAPI, Request

from bookswap.core.http import install_error_handlers
from bookswap.core.runtime import ServiceRuntime, serve, service_lifespan

from . import commands, queries
from .models import AcceptOfferRequest, CreateOfferRequest, OfferBookRequest, UpdateOfferRequest
from .repository import ExchangeRepository
from .settlement import HttpLibraryClient, LibraryClient, SettlementSaga

SERVICE = "exchange-service"

router = APIRouter()


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/offers", status_code=201)
async def cmd_create_offer(req: CreateOfferRequest, request: Request):
    """オファー作成コマンド"""
    state = request.app.state
    return await commands.create_offer(state.offers, state.emitter, req)


@router.post("/offers/{offer_id}/accept")
async def cmd_accept_offer(offer_id: str, req: AcceptOfferRequest, request: Request):
    """オファー承認コマンド（決済 Saga を実行する）"""
    state = request.app.state
    return await commands.accept_offer(
        state.offers, state.emitter, state.saga, offer_id, req.requester_id
    )


@router.post("/offers/{offer_id}/decline")
async def cmd_decline_offer(offer_id: str, request: Request):
    state = request.app.state
    return await commands.decline_offer(state.offers, state.emitter, offer_id)


@router.patch("/offers/{offer_id}")
async def cmd_update_offer(offer_id: str, req: UpdateOfferRequest, request: Request):
    return await commands.update_offer(request.app.state.offers, offer_id, req)


@router.post("/offers/{offer_id}/books")
async def cmd_add_offered_book(offer_id: str, req: OfferBookRequest, request: Request):
    return await commands.add_offered_book(request.app.state.offers, offer_id, req.book_id)


@router.delete("/offers/{offer_id}/books/{book_id}")
async def cmd_remove_offered_book(offer_id: str, book_id: str, request: Request):
    return await commands.remove_offered_book(request.app.state.offers, offer_id, book_id)


@router.delete("/offers/{offer_id}")
async def cmd_delete_offer(offer_id: str, request: Request):
    return await commands.delete_offer(request.app.state.offers, offer_id)


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/offers")
async def query_list_offers(request: Request, status: str | None = None):
    """全オファー。?status= で状態別に絞り込む"""
    repo = request.app.state.offers
    if status is not None:
        return await queries.list_by_status(repo, status)
    return await queries.list_all(repo)


@router.get("/offers/pending")
async def query_pending_offers(request: Request):
    return await queries.list_pending(request.app.state.offers)


@router.get("/offers/user/{owner_id}")
async def query_user_offers(owner_id: str, request: Request):
    return await queries.list_by_owner(request.app.state.offers, owner_id)


@router.get("/offers/{offer_id}")
async def query_get_offer(offer_id: str, request: Request):
    return await queries.get_offer(request.app.state.offers, offer_id)


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE}


def create_app(
    runtime: ServiceRuntime | None = None, library: LibraryClient | None = None
) -> FastAPI:
    async def setup(app: FastAPI, rt: ServiceRuntime) -> None:
        client = library
        if client is None:
            http = httpx.AsyncClient(timeout=rt.settings.downstream_timeout)
            rt.on_close(http.aclose)
            client = HttpLibraryClient(rt.settings.library_service_url, http)
        app.state.offers = ExchangeRepository(rt.database, rt.cache, rt.tasks)
        app.state.saga = SettlementSaga(client)
        app.state.emitter = rt.emitter

    app = FastAPI(title="Exchange Service", lifespan=service_lifespan(SERVICE, setup, runtime))
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    serve(app)
