"""
User Library Service — コマンドハンドラ (Write 側)

assign / unassign は Exchange Service の決済（本の受け渡し）からも呼ばれる。
"""

from bookswap.core.emitter import EventEmitter
from bookswap.core.events import BookAssigned, BookUnassigned, EntryDeleted, EntryUpdated
from bookswap.core.ids import parse_id
from bookswap.core.subjects import Subjects

from .models import UpdateEntryRequest, UserBook
from .repository import UserBookRepository


async def assign_book(
    repo: UserBookRepository, emitter: EventEmitter, user_id: str, book_id: str
) -> UserBook:
    """書籍をユーザーのライブラリに追加する。同じ組が既にあれば Conflict。"""
    user_id = parse_id(user_id, "user_id")
    book_id = parse_id(book_id, "book_id")
    entry = await repo.create({"user_id": user_id, "book_id": book_id})
    await emitter.emit(
        Subjects.LIBRARY_BOOK_ASSIGNED,
        BookAssigned(user_id=entry.user_id, book_id=entry.book_id),
    )
    return entry


async def unassign_book(
    repo: UserBookRepository, emitter: EventEmitter, user_id: str, book_id: str
) -> UserBook:
    """書籍をユーザーのライブラリから外す。組が存在しなければ NotFound。"""
    user_id = parse_id(user_id, "user_id")
    book_id = parse_id(book_id, "book_id")
    entry = await repo.delete_pair(user_id, book_id)
    await emitter.emit(
        Subjects.LIBRARY_BOOK_UNASSIGNED,
        BookUnassigned(user_id=entry.user_id, book_id=entry.book_id),
    )
    return entry


async def update_entry(
    repo: UserBookRepository,
    emitter: EventEmitter,
    entry_id: str,
    req: UpdateEntryRequest,
) -> UserBook:
    entry_id = parse_id(entry_id, "entry_id")
    changes: dict[str, str] = {}
    if req.user_id is not None:
        changes["user_id"] = parse_id(req.user_id, "user_id")
    if req.book_id is not None:
        changes["book_id"] = parse_id(req.book_id, "book_id")
    if not changes:
        return await repo.get(entry_id)

    entry = await repo.update(entry_id, set_fields=changes)
    await emitter.emit(
        Subjects.LIBRARY_ENTRY_UPDATED,
        EntryUpdated(id=entry.id, user_id=entry.user_id, book_id=entry.book_id),
    )
    return entry


async def delete_entry(
    repo: UserBookRepository, emitter: EventEmitter, entry_id: str
) -> UserBook:
    entry = await repo.delete(parse_id(entry_id, "entry_id"))
    await emitter.emit(
        Subjects.LIBRARY_ENTRY_DELETED,
        EntryDeleted(id=entry.id, user_id=entry.user_id),
    )
    return entry
