"""
User Service — キャッシュ付きリポジトリ

キー: user:<id> / users:all
メールアドレスの一意性はストアの一意制約で保証する。
"""

from bookswap.core.cache import VOLATILE_LIST_TTL
from bookswap.core.repository import CachedRepository
from bookswap.core.store import Database

from .models import User

ALL_KEY = "users:all"


class UserRepository(CachedRepository[User]):
    model = User
    entity_prefix = "user"

    def __init__(self, db: Database, cache, tasks) -> None:
        super().__init__(db.collection("users", unique=(("email",),)), cache, tasks)

    def list_keys(self, user: User) -> list[str]:
        return [ALL_KEY]

    async def list_all(self) -> list[User]:
        return await self.cached_list(ALL_KEY, self.collection.find, VOLATILE_LIST_TTL)
