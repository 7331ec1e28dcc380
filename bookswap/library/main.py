"""
User Library Service — FastAPI エントリーポイント

POST /library/assign と POST /library/unassign は Exchange Service の決済で使われる。
"""

from fastapi import APIRouter, FastAPI, Request

from bookswap.core.http import install_error_handlers
from bookswap.core.runtime import ServiceRuntime, serve, service_lifespan

from . import commands, queries
from .models import AssignRequest, UpdateEntryRequest
from .repository import UserBookRepository

SERVICE = "user-library-service"

router = APIRouter()


async def setup(app: FastAPI, rt: ServiceRuntime) -> None:
    app.state.library = UserBookRepository(rt.database, rt.cache, rt.tasks)
    app.state.emitter = rt.emitter


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/library/assign", status_code=201)
async def cmd_assign_book(req: AssignRequest, request: Request):
    state = request.app.state
    return await commands.assign_book(state.library, state.emitter, req.user_id, req.book_id)


@router.post("/library/unassign")
async def cmd_unassign_book(req: AssignRequest, request: Request):
    state = request.app.state
    return await commands.unassign_book(
        state.library, state.emitter, req.user_id, req.book_id
    )


@router.patch("/library/entries/{entry_id}")
async def cmd_update_entry(entry_id: str, req: UpdateEntryRequest, request: Request):
    state = request.app.state
    return await commands.update_entry(state.library, state.emitter, entry_id, req)


@router.delete("/library/entries/{entry_id}")
async def cmd_delete_entry(entry_id: str, request: Request):
    state = request.app.state
    return await commands.delete_entry(state.library, state.emitter, entry_id)


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/library/entries")
async def query_list_entries(request: Request):
    return await queries.list_all_entries(request.app.state.library)


@router.get("/library/entries/{entry_id}")
async def query_get_entry(entry_id: str, request: Request):
    return await queries.get_entry(request.app.state.library, entry_id)


@router.get("/library/users/{user_id}")
async def query_user_books(user_id: str, request: Request):
    return await queries.list_user_books(request.app.state.library, user_id)


@router.get("/library/books/{book_id}")
async def query_book_entries(book_id: str, request: Request):
    return await queries.list_by_book(request.app.state.library, book_id)


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE}


def create_app(runtime: ServiceRuntime | None = None) -> FastAPI:
    app = FastAPI(
        title="User Library Service", lifespan=service_lifespan(SERVICE, setup, runtime)
    )
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    serve(app)
