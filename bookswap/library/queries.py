"""User Library Service — クエリハンドラ (Read 側)"""

from bookswap.core.ids import parse_id

from .models import UserBook
from .repository import UserBookRepository


async def list_user_books(repo: UserBookRepository, user_id: str) -> list[UserBook]:
    return await repo.list_by_user(parse_id(user_id, "user_id"))


async def get_entry(repo: UserBookRepository, entry_id: str) -> UserBook:
    return await repo.get(parse_id(entry_id, "entry_id"))


async def list_all_entries(repo: UserBookRepository) -> list[UserBook]:
    return await repo.list_all()


async def list_by_book(repo: UserBookRepository, book_id: str) -> list[UserBook]:
    return await repo.list_by_book(parse_id(book_id, "book_id"))
