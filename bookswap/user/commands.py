"""User Service — コマンドハンドラ (Write 側)"""

from bookswap.core.emitter import EventEmitter
from bookswap.core.errors import InvalidArgument
from bookswap.core.events import UserCreated
from bookswap.core.subjects import Subjects

from .models import CreateUserRequest, User
from .repository import UserRepository


async def create_user(
    repo: UserRepository, emitter: EventEmitter, req: CreateUserRequest
) -> User:
    """
    ユーザー登録コマンド

    1. 名前とメールアドレスを検証（メールは小文字に正規化）
    2. ストアに保存（メール重複は Conflict）
    3. user.created を発行 → Notification Service がウェルカムメールを送る
    """
    name = req.name.strip()
    email = req.email.strip().lower()
    if not name:
        raise InvalidArgument("name is required")
    if "@" not in email:
        raise InvalidArgument(f"invalid email: {req.email!r}")

    user = await repo.create({"name": name, "email": email, "password": req.password})

    await emitter.emit(
        Subjects.USER_CREATED,
        UserCreated(id=user.id, name=user.name, email=user.email),
    )
    return user
