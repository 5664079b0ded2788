"""Redis-backed activity sync watermarks.

Remembers, per (provider, server URL), the instant of the last successful
activity sync so the next poll can ask only for what happened since.

Key schema:
    logrelay:watermark:{sha256(provider + url)}

Usage::

    from logrelay.cache.watermarks import WatermarkStore

    store = WatermarkStore(url="redis://localhost:6379/0")
    since = store.get("sonarr", "http://sonarr:8989")
    activities = await provider.get_activity(since)
    store.set("sonarr", "http://sonarr:8989", newest_history)
"""
from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime
from typing import Any

from ..config import settings

logger = logging.getLogger(__name__)


def make_watermark_key(provider_id: str, server_url: str) -> str:
    """Derive a stable key for one server of one provider type."""
    raw = json.dumps({"provider": provider_id, "url": server_url}, sort_keys=True)
    digest = hashlib.sha256(raw.encode()).hexdigest()[:32]
    return f"logrelay:watermark:{digest}"


class WatermarkStore:
    """Redis store for last-sync instants.

    Gracefully degrades to a no-op when Redis is unavailable: ``get`` returns
    None (full sync) and ``set`` returns False.

    Args:
        url:  Redis connection URL (redis://host:port/db).
        ttl:  Seconds a watermark survives without being refreshed.
    """

    def __init__(self, url: str | None = None, ttl: int | None = None) -> None:
        self._url = url or settings.redis_url
        self._ttl = ttl if ttl is not None else settings.watermark_ttl
        self._client: Any = None
        self._connect()

    def _connect(self) -> None:
        try:
            import redis  # type: ignore[import-untyped]

            self._client = redis.Redis.from_url(self._url, decode_responses=True)
            self._client.ping()
            logger.debug("Redis watermark store connected: %s", self._url)
        except Exception as exc:
            logger.warning("Redis unavailable, incremental sync disabled: %s", exc)
            self._client = None

    def get(self, provider_id: str, server_url: str) -> datetime | None:
        """Return the stored watermark, or None on miss / error."""
        if self._client is None:
            return None
        key = make_watermark_key(provider_id, server_url)
        try:
            raw = self._client.get(key)
            if raw is None:
                return None
            return datetime.fromisoformat(raw)
        except Exception as exc:
            logger.warning("Watermark get failed for key %r: %s", key, exc)
            return None

    def set(self, provider_id: str, server_url: str, moment: datetime) -> bool:
        """Store ``moment`` with the configured TTL. Returns True on success."""
        if self._client is None:
            return False
        key = make_watermark_key(provider_id, server_url)
        try:
            self._client.setex(key, self._ttl, moment.isoformat())
            return True
        except Exception as exc:
            logger.warning("Watermark set failed for key %r: %s", key, exc)
            return False

    def clear(self, provider_id: str, server_url: str) -> bool:
        """Forget a watermark so the next sync is a full one."""
        if self._client is None:
            return False
        key = make_watermark_key(provider_id, server_url)
        try:
            return bool(self._client.delete(key))
        except Exception as exc:
            logger.warning("Watermark clear failed for key %r: %s", key, exc)
            return False

    @property
    def available(self) -> bool:
        """True when the Redis connection is healthy."""
        return self._client is not None
