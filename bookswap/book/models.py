"""Book Service — エンティティとリクエストモデル"""

from pydantic import BaseModel


class Book(BaseModel):
    id: str
    title: str
    author: str = ""
    genre: str = ""
    language: str = ""
    description: str = ""
    rating: float = 0.0
    price: float = 0.0
    pages: int = 0
    published_date: str = ""


# ── Request Models ───────────────────────────────


class CreateBookRequest(BaseModel):
    title: str
    author: str = ""
    genre: str = ""
    language: str = ""
    description: str = ""
    rating: float = 0.0
    price: float = 0.0
    pages: int = 0
    published_date: str = ""


class UpdateBookRequest(BaseModel):
    """部分更新。指定したフィールドだけを書き換える。"""

    title: str | None = None
    author: str | None = None
    genre: str | None = None
    language: str | None = None
    description: str | None = None
    rating: float | None = None
    price: float | None = None
    pages: int | None = None
    published_date: str | None = None
