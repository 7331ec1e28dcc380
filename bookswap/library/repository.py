"""
User Library Service — キャッシュ付きリポジトリ

キー:
  user_book:<id>            単一エントリ
  user_books:<uid>          ユーザーのライブラリ
  user_books:all            全エントリ
  user_books:book:<bid>     書籍を持っているエントリ

(user_id, book_id) の組はストアの一意制約で重複を防ぐ。
"""

from bookswap.core.cache import FILTER_LIST_TTL, VOLATILE_LIST_TTL
from bookswap.core.errors import NotFound
from bookswap.core.repository import CachedRepository
from bookswap.core.store import Database

from .models import UserBook

ALL_KEY = "user_books:all"


def user_books_key(user_id: str) -> str:
    return f"user_books:{user_id}"


def book_entries_key(book_id: str) -> str:
    return f"user_books:book:{book_id}"


class UserBookRepository(CachedRepository[UserBook]):
    model = UserBook
    entity_prefix = "user_book"

    def __init__(self, db: Database, cache, tasks) -> None:
        super().__init__(
            db.collection("user_books", unique=(("user_id", "book_id"),)), cache, tasks
        )

    def list_keys(self, entry: UserBook) -> list[str]:
        return [ALL_KEY, user_books_key(entry.user_id), book_entries_key(entry.book_id)]

    async def list_by_user(self, user_id: str) -> list[UserBook]:
        return await self.cached_list(
            user_books_key(user_id),
            lambda: self.collection.find({"user_id": user_id}),
            VOLATILE_LIST_TTL,
        )

    async def list_by_book(self, book_id: str) -> list[UserBook]:
        return await self.cached_list(
            book_entries_key(book_id),
            lambda: self.collection.find({"book_id": book_id}),
            FILTER_LIST_TTL,
        )

    async def list_all(self) -> list[UserBook]:
        return await self.cached_list(ALL_KEY, self.collection.find, VOLATILE_LIST_TTL)

    async def delete_pair(self, user_id: str, book_id: str) -> UserBook:
        """(user_id, book_id) のエントリを 1 件削除する。"""
        found = await self.collection.find({"user_id": user_id, "book_id": book_id}, limit=1)
        if not found:
            raise NotFound(f"book {book_id} is not in the library of user {user_id}")
        return await self.delete(found[0]["id"])
