"""User Library Service — エンティティとリクエストモデル"""

from pydantic import BaseModel


class UserBook(BaseModel):
    """ユーザーのライブラリに入っている 1 冊（ユーザー × 書籍で一意）"""

    id: str
    user_id: str
    book_id: str


class AssignRequest(BaseModel):
    user_id: str
    book_id: str


class UpdateEntryRequest(BaseModel):
    user_id: str | None = None
    book_id: str | None = None
