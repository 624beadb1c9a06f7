from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

AccessTokenProvider = Callable[[], Awaitable[str]]


@dataclass
class ApiConfiguration:
    """Settings shared by every API resource.

    ``access_token`` is awaited once per request so a refresh performed by
    the token manager is picked up without rebuilding clients.
    """

    base_path: str
    access_token: AccessTokenProvider | None = None

    async def authorization_header(self) -> str | None:
        if self.access_token is None:
            return None
        token = await self.access_token()
        return f"Bearer {token}"
