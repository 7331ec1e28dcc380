"""
User Service — FastAPI エントリーポイント

GET /users/{id} は Notification Service が宛先メールアドレスの解決に使う。
"""

from fastapi import APIRouter, FastAPI, Request

from bookswap.core.http import install_error_handlers
from bookswap.core.runtime import ServiceRuntime, serve, service_lifespan

from . import commands, queries
from .models import CreateUserRequest
from .repository import UserRepository

SERVICE = "user-service"

router = APIRouter()


async def setup(app: FastAPI, rt: ServiceRuntime) -> None:
    app.state.users = UserRepository(rt.database, rt.cache, rt.tasks)
    app.state.emitter = rt.emitter


@router.post("/users", status_code=201)
async def cmd_create_user(req: CreateUserRequest, request: Request):
    """ユーザー登録コマンド"""
    state = request.app.state
    return await commands.create_user(state.users, state.emitter, req)


@router.get("/users")
async def query_list_users(request: Request):
    return await queries.list_users(request.app.state.users)


@router.get("/users/{user_id}")
async def query_get_user(user_id: str, request: Request):
    return await queries.get_user(request.app.state.users, user_id)


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE}


def create_app(runtime: ServiceRuntime | None = None) -> FastAPI:
    app = FastAPI(title="User Service", lifespan=service_lifespan(SERVICE, setup, runtime))
    install_error_handlers(app)
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    serve(app)
