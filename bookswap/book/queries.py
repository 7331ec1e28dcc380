"""Book Service — クエリハンドラ (Read 側)"""

from bookswap.core.errors import InvalidArgument
from bookswap.core.ids import parse_id

from .models import Book
from .repository import BookRepository


async def get_book(repo: BookRepository, book_id: str) -> Book:
    return await repo.get(parse_id(book_id, "book_id"))


async def list_books(repo: BookRepository) -> list[Book]:
    return await repo.list_all()


async def list_by_genre(repo: BookRepository, genre: str) -> list[Book]:
    return await repo.list_by_genre(genre)


async def list_by_author(repo: BookRepository, author: str) -> list[Book]:
    return await repo.list_by_author(author)


async def list_by_language(repo: BookRepository, language: str) -> list[Book]:
    return await repo.list_by_language(language)


async def top_rated(repo: BookRepository) -> list[Book]:
    return await repo.top_rated()


async def new_arrivals(repo: BookRepository) -> list[Book]:
    return await repo.new_arrivals()


async def search_books(repo: BookRepository, term: str) -> list[Book]:
    """タイトル・著者・説明文の部分一致検索（大文字小文字を区別しない）"""
    term = term.strip()
    if not term:
        raise InvalidArgument("search term is required")
    return await repo.search(term)


async def recommend(repo: BookRepository, book_id: str) -> list[Book]:
    """指定した書籍に対するおすすめ（最大 10 件）"""
    book = await repo.get(parse_id(book_id, "book_id"))
    return await repo.recommend(book)
