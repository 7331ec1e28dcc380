"""Notification Service — User Service への問い合わせ（宛先メールアドレスの解決）"""

from typing import Protocol

import httpx

from bookswap.core.errors import DownstreamUnavailable


class UserDirectory(Protocol):
    async def get_user(self, user_id: str) -> dict: ...


class HttpUserDirectory:
    """GET /users/{id} を呼ぶ。失敗はすべて DownstreamUnavailable にする。"""

    def __init__(self, base_url: str, client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.client = client

    async def get_user(self, user_id: str) -> dict:
        try:
            resp = await self.client.get(f"{self.base_url}/users/{user_id}")
            resp.raise_for_status()
            user = resp.json()
        except httpx.HTTPStatusError as e:
            raise DownstreamUnavailable(
                f"user lookup {user_id} returned {e.response.status_code}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise DownstreamUnavailable(f"user lookup {user_id} failed: {e}") from e
        if not isinstance(user, dict) or not user.get("email"):
            raise DownstreamUnavailable(f"user {user_id} has no email")
        return user
