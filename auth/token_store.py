from __future__ import annotations

import json
import os
import stat
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass
class StoredTokens:
    access_token: str
    refresh_token: str
    expires_at: int
    scope: str | None = None

    def to_payload(self) -> dict:
        payload = {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at,
        }
        if self.scope is not None:
            payload["scope"] = self.scope
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "StoredTokens":
        access_token = payload.get("accessToken")
        refresh_token = payload.get("refreshToken")
        expires_at = payload.get("expiresAt")
        scope = payload.get("scope")

        if not isinstance(access_token, str) or not access_token:
            raise RuntimeError("Stored tokens missing accessToken.")
        if not isinstance(refresh_token, str) or not refresh_token:
            raise RuntimeError("Stored tokens missing refreshToken.")
        if not isinstance(expires_at, (int, float)) or isinstance(expires_at, bool):
            raise RuntimeError("Stored tokens missing expiresAt.")
        if scope is not None and not isinstance(scope, str):
            raise RuntimeError("Stored tokens scope must be a string.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(expires_at),
            scope=scope,
        )


class TokenStore(ABC):
    """Durable slot for a single token record.

    Implementations should make ``save`` atomic: a half-written refresh
    token cannot be recovered, the previous one is already revoked.
    """

    @abstractmethod
    async def load(self) -> StoredTokens | None:
        raise NotImplementedError

    @abstractmethod
    async def save(self, tokens: StoredTokens) -> None:
        raise NotImplementedError

    @abstractmethod
    async def clear(self) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, tokens: StoredTokens | None = None) -> None:
        self._tokens = tokens

    async def load(self) -> StoredTokens | None:
        return self._tokens

    async def save(self, tokens: StoredTokens) -> None:
        self._tokens = tokens

    async def clear(self) -> None:
        self._tokens = None


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = ".tokens.json") -> None:
        self._path = Path(path).expanduser().resolve()

    @property
    def path(self) -> Path:
        return self._path

    async def load(self) -> StoredTokens | None:
        if not self._path.exists():
            return None

        raw = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(raw, dict):
            raise RuntimeError("Token store file is invalid; expected top-level JSON object.")
        return StoredTokens.from_payload(raw)

    async def save(self, tokens: StoredTokens) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(tokens.to_payload(), handle, indent=2, sort_keys=True)
            os.chmod(tmp_path, stat.S_IRUSR | stat.S_IWUSR)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    async def clear(self) -> None:
        self._path.unlink(missing_ok=True)
