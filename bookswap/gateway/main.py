"""
API Gateway — エッジルーター

/<service>/<tail> を対応するバックエンドへそのまま転送する。
メソッド・クエリ文字列・ボディ・ヘッダー（host とホップバイホップヘッダーを除く）は
書き換えずに渡し、プレフィックスだけを取り除く。

  ┌──────────┐     ┌─────────┐     ┌──────────────────────┐
  │  Client  │────▶│ Gateway │────▶│ Book Service         │  /books/...
  │          │     │         │────▶│ User Service         │  /users/...
  │          │     │         │────▶│ User Library Service │  /libraries/...
  │          │     │         │────▶│ Exchange Service     │  /exchange/...
  │          │     │         │────▶│ Order Service        │  /orders/...
  │          │     │         │────▶│ Notification Service │  /notifications/...
  └──────────┘     └─────────┘     └──────────────────────┘

認証・レート制限は行わない。
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bookswap.core.config import Settings
from bookswap.core.runtime import serve

logger = logging.getLogger(__name__)

METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# httpx がボディを復元済みなので長さ・圧縮の表明は付け直させる
RESPONSE_DROP = HOP_BY_HOP | {"content-length", "content-encoding"}
REQUEST_DROP = HOP_BY_HOP | {"host", "content-length"}


def upstreams(settings: Settings) -> dict[str, str]:
    """ゲートウェイのプレフィックス → バックエンドのマウントポイント"""
    return {
        "books": f"{settings.book_service_url.rstrip('/')}/books",
        "users": f"{settings.user_service_url.rstrip('/')}/users",
        "libraries": f"{settings.library_service_url.rstrip('/')}/library",
        "exchange": f"{settings.exchange_service_url.rstrip('/')}/offers",
        "orders": f"{settings.order_service_url.rstrip('/')}/orders",
        "notifications": f"{settings.notification_service_url.rstrip('/')}/notifications",
    }


def create_app(
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        app.state.upstreams = upstreams(cfg)
        app.state.client = httpx.AsyncClient(
            timeout=cfg.downstream_timeout, transport=transport
        )
        yield
        await app.state.client.aclose()

    app = FastAPI(title="API Gateway", lifespan=lifespan)

    # CORS 設定（ブラウザからの直接アクセスを許可）
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": "api-gateway"}

    @app.api_route("/{service}", methods=METHODS)
    @app.api_route("/{service}/{tail:path}", methods=METHODS)
    async def proxy(service: str, request: Request, tail: str = ""):
        base = request.app.state.upstreams.get(service)
        if base is None:
            raise HTTPException(404, f"unknown service: {service}")
        return await forward(request.app.state.client, request, base, tail)

    return app


async def forward(
    client: httpx.AsyncClient, request: Request, base: str, tail: str
) -> Response:
    url = f"{base}/{tail}" if tail else base
    if request.url.query:
        url = f"{url}?{request.url.query}"
    # 同名ヘッダーの繰り返しを保つ
    headers = [
        (k, v) for k, v in request.headers.raw if k.decode("latin-1").lower() not in REQUEST_DROP
    ]

    try:
        upstream = await client.request(
            request.method, url, headers=headers, content=await request.body()
        )
    except httpx.HTTPError as e:
        logger.warning("Upstream %s %s failed: %s", request.method, url, e)
        return JSONResponse(status_code=502, content={"detail": f"upstream unavailable: {e}"})

    response = Response(content=upstream.content, status_code=upstream.status_code)
    for k, v in upstream.headers.multi_items():
        if k.lower() not in RESPONSE_DROP:
            response.headers.append(k, v)
    return response


app = create_app()


def main() -> None:
    serve(app)
