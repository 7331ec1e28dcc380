"""
Book Service — FastAPI エントリーポイント

書籍カタログの CRUD と、ジャンル・著者・言語別の一覧、
評価順・新着・おすすめ・検索を提供する。
書き込みは Command、読み取りは Query に分けてある。
"""

from fastapi import APIRouter, FastAPI, Request

from bookswap.core.http import install_error_handlers
from bookswap.core.runtime import ServiceRuntime, serve, service_lifespan

from . import commands, queries
from .models import CreateBookRequest, UpdateBookRequest
from .repository import BookRepository

SERVICE = "book-service"

router = APIRouter()


async def setup(app: FastAPI, rt: ServiceRuntime) -> None:
    app.state.books = BookRepository(rt.database, rt.cache, rt.tasks)
    app.state.emitter = rt.emitter


# ── Command Endpoints (Write 側) ─────────────────


@router.post("/books", status_code=201)
async def cmd_create_book(req: CreateBookRequest, request: Request):
    """書籍作成コマンド"""
    state = request.app.state
    return await commands.create_book(state.books, state.emitter, req)


@router.patch("/books/{book_id}")
async def cmd_update_book(book_id: str, req: UpdateBookRequest, request: Request):
    """書籍の部分更新"""
    return await commands.update_book(request.app.state.books, book_id, req)


@router.delete("/books/{book_id}")
async def cmd_delete_book(book_id: str, request: Request):
    """書籍削除。削除した書籍を返す"""
    return await commands.delete_book(request.app.state.books, book_id)


# ── Query Endpoints (Read 側) ────────────────────


@router.get("/books")
async def query_list_books(request: Request):
    return await queries.list_books(request.app.state.books)


@router.get("/books/search")
async def query_search_books(q: str, request: Request):
    return await queries.search_books(request.app.state.books, q)


@router.get("/books/top-rated")
async def query_top_rated(request: Request):
    return await queries.top_rated(request.app.state.books)


@router.get("/books/new-arrivals")
async def query_new_arrivals(request: Request):
    return await queries.new_arrivals(request.app.state.books)


@router.get("/books/genre/{genre}")
async def query_by_genre(genre: str, request: Request):
    return await queries.list_by_genre(request.app.state.books, genre)


@router.get("/books/author/{author}")
async def query_by_author(author: str, request: Request):
    return await queries.list_by_author(request.app.state.books, author)


@router.get("/books/language/{language}")
async def query_by_language(language: str, request: Request):
    return await queries.list_by_language(request.app.state.books, language)


@router.get("/books/{book_id}")
async def query_get_book(book_id: str, request: Request):
    return await queries.get_book(request.app.state.books, book_id)


@router.get("/books/{book_id}/recommendations")
async def query_recommend(book_id: str, request: Request):
    return await queries.recommend(request.app.state.books, book_id)


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE}


def create_app(runtime: ServiceRuntime | None = None) -> FastAPI:
    app = FastAPI(title="Book Service", lifespan=service_lifespan(SERVICE, setup, runtime))
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    serve(app)
