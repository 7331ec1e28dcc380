"""ログ設定"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """プロセス全体のルートロガーにストリームハンドラを 1 つだけ設定する。"""
    root = logging.getLogger()
    if not any(getattr(h, "_bookswap", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._bookswap = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level)
