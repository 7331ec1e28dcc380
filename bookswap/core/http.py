"""例外階層を HTTP レスポンスに変換する FastAPI 例外ハンドラ"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .errors import (
    BookSwapError,
    Conflict,
    DownstreamUnavailable,
    InvalidArgument,
    NotFound,
    StoreUnavailable,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[BookSwapError], int] = {
    InvalidArgument: 400,
    NotFound: 404,
    Conflict: 409,
    StoreUnavailable: 503,
    DownstreamUnavailable: 502,
}


def status_for(exc: BookSwapError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(BookSwapError)
    async def handle_bookswap_error(request: Request, exc: BookSwapError):
        status = status_for(exc)
        if status >= 500:
            logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status, content={"detail": exc.message})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        # 必須フィールドの欠落・型の不一致は InvalidArgument と同じ 400 にする
        errors = "; ".join(
            f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()
        )
        return JSONResponse(status_code=400, content={"detail": errors})
