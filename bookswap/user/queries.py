"""User Service — クエリハンドラ (Read 側)"""

from bookswap.core.ids import parse_id

from .models import User
from .repository import UserRepository


async def get_user(repo: UserRepository, user_id: str) -> User:
    return await repo.get(parse_id(user_id, "user_id"))


async def list_users(repo: UserRepository) -> list[User]:
    return await repo.list_all()
