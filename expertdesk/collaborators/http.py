"""httpx-backed clients for the user directory and the content store."""

import json
import os

import httpx

from expertdesk.collaborators import UserInfo
from expertdesk.logging_config import get_logger

logger = get_logger(__name__)

USER_DIRECTORY_URL = os.getenv("USER_DIRECTORY_URL", "http://localhost:8100")
CONTENT_STORE_URL = os.getenv("CONTENT_STORE_URL", "http://localhost:8200")
USER_CACHE_TTL_SECONDS = int(os.getenv("USER_CACHE_TTL_SECONDS", "60"))
HTTP_TIMEOUT_SECONDS = 5.0


class HttpUserDirectory:
    """User directory over HTTP with a short Redis cache in front.

    ``GET {base}/users/{id}`` returns ``{"id", "verified", "is_admin"}``
    or 404 for unknown users.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        redis=None,
        cache_ttl: int = USER_CACHE_TTL_SECONDS,
    ):
        self._client = client
        self._redis = redis
        self._cache_ttl = cache_ttl

    @staticmethod
    def _cache_key(user_id: int) -> str:
        return f"userdir:{user_id}"

    async def get_user(self, user_id: int) -> UserInfo | None:
        if self._redis is not None:
            try:
                cached = await self._redis.get(self._cache_key(user_id))
                if cached is not None:
                    return UserInfo(**json.loads(cached))
            except Exception as e:
                logger.warning("user_cache_read_failed", user_id=user_id, error=str(e))

        response = await self._client.get(f"/users/{user_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        info = UserInfo(
            id=int(data.get("id", user_id)),
            verified=bool(data.get("verified", False)),
            is_admin=bool(data.get("is_admin", False)),
        )

        if self._redis is not None:
            try:
                payload = json.dumps(
                    {"id": info.id, "verified": info.verified, "is_admin": info.is_admin}
                )
                await self._redis.setex(self._cache_key(user_id), self._cache_ttl, payload)
            except Exception as e:
                logger.warning("user_cache_write_failed", user_id=user_id, error=str(e))

        return info


class HttpContentStore:
    """Content store over HTTP.

    ``GET {base}/content/{type}/{id}`` returns ``{"owner_id": ...}`` or 404.
    """

    def __init__(self, client: httpx.AsyncClient):
        self._client = client

    async def _fetch(self, content_type: str, content_id: int) -> dict | None:
        response = await self._client.get(f"/content/{content_type}/{content_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def exists(self, content_type: str, content_id: int) -> bool:
        return await self._fetch(content_type, content_id) is not None

    async def owner_of(self, content_type: str, content_id: int) -> int | None:
        data = await self._fetch(content_type, content_id)
        if data is None or data.get("owner_id") is None:
            return None
        return int(data["owner_id"])


def build_http_client(base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=base_url, timeout=HTTP_TIMEOUT_SECONDS)
