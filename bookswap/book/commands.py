"""
Book Service — コマンドハンドラ (Write 側)

1. リクエストを検証
2. リポジトリ経由でストアに書き込み（キャッシュの無効化はリポジトリが行う）
3. 必要ならドメインイベントを発行
"""

from bookswap.core.emitter import EventEmitter
from bookswap.core.errors import InvalidArgument
from bookswap.core.events import BookCreated
from bookswap.core.ids import parse_id
from bookswap.core.subjects import Subjects

from .models import Book, CreateBookRequest, UpdateBookRequest
from .repository import BookRepository


async def create_book(
    repo: BookRepository, emitter: EventEmitter, req: CreateBookRequest
) -> Book:
    """書籍作成コマンド。book.created を発行する。"""
    title = req.title.strip()
    if not title:
        raise InvalidArgument("title is required")
    _check_numbers(req.rating, req.price, req.pages)

    doc = req.model_dump()
    doc["title"] = title
    book = await repo.create(doc)

    await emitter.emit(
        Subjects.BOOK_CREATED,
        BookCreated(id=book.id, title=book.title, author=book.author),
    )
    return book


async def update_book(repo: BookRepository, book_id: str, req: UpdateBookRequest) -> Book:
    """部分更新コマンド。変更がなければ現在の値を返す。"""
    book_id = parse_id(book_id, "book_id")
    changes = req.model_dump(exclude_none=True)
    if "title" in changes:
        changes["title"] = changes["title"].strip()
        if not changes["title"]:
            raise InvalidArgument("title must not be empty")
    _check_numbers(changes.get("rating"), changes.get("price"), changes.get("pages"))
    if not changes:
        return await repo.get(book_id)
    return await repo.update(book_id, set_fields=changes)


async def delete_book(repo: BookRepository, book_id: str) -> Book:
    return await repo.delete(parse_id(book_id, "book_id"))


def _check_numbers(rating, price, pages) -> None:
    if rating is not None and rating < 0:
        raise InvalidArgument("rating must not be negative")
    if price is not None and price < 0:
        raise InvalidArgument("price must not be negative")
    if pages is not None and pages < 0:
        raise InvalidArgument("pages must not be negative")
