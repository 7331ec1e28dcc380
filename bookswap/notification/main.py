"""
Notification Service — FastAPI エントリーポイント

バスで全ドメインイベントを購読し、バックグラウンドでメール通知に変換する。
HTTP で提供するのはヘルスチェックと処理結果の件数だけ。

┌──────────────┐   domain events   ┌──────────────────────┐  GET /users/{id}  ┌──────────────┐
│ 各サービス    │ ─── Pub/Sub ────▶ │ Notification Service │ ───────────────▶ │ User Service │
└──────────────┘                    └──────────┬───────────┘                   └──────────────┘
                                               │ SMTP
                                               ▼
                                          ユーザーのメール
"""

import httpx
from fastapi import APIRouter, FastAPI, Request

from bookswap.core.runtime import ServiceRuntime, serve, service_lifespan

from .mailer import EmailSink, build_sink
from .notifier import Notifier
from .subscriber import subscribe_all
from .user_client import HttpUserDirectory, UserDirectory

SERVICE = "notification-service"

router = APIRouter()


@router.get("/notifications/stats")
async def query_stats(request: Request):
    """受信・配送・破棄（理由別）の件数"""
    return request.app.state.notifier.snapshot()


@router.get("/health")
async def health():
    return {"status": "ok", "service": SERVICE}


def create_app(
    runtime: ServiceRuntime | None = None,
    users: UserDirectory | None = None,
    sink: EmailSink | None = None,
) -> FastAPI:
    async def setup(app: FastAPI, rt: ServiceRuntime) -> None:
        directory = users
        if directory is None:
            http = httpx.AsyncClient(timeout=rt.settings.downstream_timeout)
            rt.on_close(http.aclose)
            directory = HttpUserDirectory(rt.settings.user_service_url, http)
        notifier = Notifier(directory, sink or build_sink(rt.settings))
        app.state.notifier = notifier
        await subscribe_all(rt.bus, notifier)

    app = FastAPI(
        title="Notification Service", lifespan=service_lifespan(SERVICE, setup, runtime)
    )
    app.include_router(router)
    return app


app = create_app()


def main() -> None:
    serve(app)
