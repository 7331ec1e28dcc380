"""
Book Service — キャッシュ付きリポジトリ

キー:
  book:<id>                 単一の書籍
  books:all                 全件
  books:genre:<g>           ジャンル別 / author:<a> / language:<l> も同様
  books:top_rated           評価順の上位 10 件
  books:new_arrivals        新着 10 件
  books:recommend:<id>      おすすめ（書き込みのたびにプレフィックスごと無効化）

検索 (search) は語句ごとにキーが増えるのでキャッシュしない。
"""

from bookswap.core.cache import (
    FILTER_LIST_TTL,
    NEW_ARRIVALS_TTL,
    RECOMMEND_TTL,
    TOP_RATED_TTL,
    VOLATILE_LIST_TTL,
)
from bookswap.core.repository import CachedRepository
from bookswap.core.store import Database

from .models import Book

TOP_N = 10
SEARCH_FIELDS = ("title", "author", "description")

ALL_KEY = "books:all"
TOP_RATED_KEY = "books:top_rated"
NEW_ARRIVALS_KEY = "books:new_arrivals"


def genre_key(genre: str) -> str:
    return f"books:genre:{genre}"


def author_key(author: str) -> str:
    return f"books:author:{author}"


def language_key(language: str) -> str:
    return f"books:language:{language}"


def recommend_key(book_id: str) -> str:
    return f"books:recommend:{book_id}"


class BookRepository(CachedRepository[Book]):
    model = Book
    entity_prefix = "book"
    invalidation_patterns = ("books:recommend:*",)

    def __init__(self, db: Database, cache, tasks) -> None:
        super().__init__(db.collection("books"), cache, tasks)

    def list_keys(self, book: Book) -> list[str]:
        # 評価・登録順の一覧は書き込みで並びが変わりうるので常に消す
        return [
            ALL_KEY,
            genre_key(book.genre),
            author_key(book.author),
            language_key(book.language),
            TOP_RATED_KEY,
            NEW_ARRIVALS_KEY,
        ]

    async def list_all(self) -> list[Book]:
        return await self.cached_list(ALL_KEY, self.collection.find, VOLATILE_LIST_TTL)

    async def list_by_genre(self, genre: str) -> list[Book]:
        return await self.cached_list(
            genre_key(genre),
            lambda: self.collection.find({"genre": genre}),
            FILTER_LIST_TTL,
        )

    async def list_by_author(self, author: str) -> list[Book]:
        return await self.cached_list(
            author_key(author),
            lambda: self.collection.find({"author": author}),
            FILTER_LIST_TTL,
        )

    async def list_by_language(self, language: str) -> list[Book]:
        return await self.cached_list(
            language_key(language),
            lambda: self.collection.find({"language": language}),
            FILTER_LIST_TTL,
        )

    async def top_rated(self) -> list[Book]:
        return await self.cached_list(
            TOP_RATED_KEY,
            lambda: self.collection.find(order_by="rating", descending=True, limit=TOP_N),
            TOP_RATED_TTL,
        )

    async def new_arrivals(self) -> list[Book]:
        return await self.cached_list(
            NEW_ARRIVALS_KEY,
            lambda: self.collection.find(descending=True, limit=TOP_N),
            NEW_ARRIVALS_TTL,
        )

    async def search(self, term: str) -> list[Book]:
        docs = await self.collection.search(term, SEARCH_FIELDS)
        return [Book.model_validate(d) for d in docs]

    async def recommend(self, book: Book) -> list[Book]:
        """
        同じジャンルの書籍（自身を除く）を挙げ、10 件に満たなければ
        評価の高い順に補う。
        """

        async def load() -> list[dict]:
            picks: list[dict] = []
            seen = {book.id}
            if book.genre:
                for doc in await self.collection.find({"genre": book.genre}):
                    if doc["id"] not in seen:
                        picks.append(doc)
                        seen.add(doc["id"])
            if len(picks) < TOP_N:
                ranked = await self.collection.find(
                    order_by="rating", descending=True, limit=TOP_N + len(seen)
                )
                for doc in ranked:
                    if doc["id"] not in seen:
                        picks.append(doc)
                        seen.add(doc["id"])
            return picks[:TOP_N]

        return await self.cached_list(recommend_key(book.id), load, RECOMMEND_TTL)
