"""
エンティティ ID

ID は 12 バイトの不透明なトークン。境界を越えるときは
24 文字の小文字 16 進文字列として表現する。
"""

import re
import secrets

from .errors import InvalidArgument

_HEX_ID = re.compile(r"^[0-9a-f]{24}$")


def new_id() -> str:
    """サーバー側で新しい ID を採番する。"""
    return secrets.token_hex(12)


def parse_id(raw: str | None, field: str = "id") -> str:
    """
    外部から受け取った ID を検証して正規化する。

    大文字の 16 進は小文字に揃える。形式が不正なら InvalidArgument。
    """
    if not raw:
        raise InvalidArgument(f"{field} is required")
    value = raw.strip().lower()
    if not _HEX_ID.match(value):
        raise InvalidArgument(f"invalid {field}: {raw!r}")
    return value


def parse_ids(raws: list[str] | None, field: str) -> list[str]:
    """ID のリストを順序を保ったまま検証する。"""
    return [parse_id(raw, field) for raw in raws or []]
