"""Cache of computed responses keyed by request fingerprint.

Higher tiers get shorter TTLs: fresher results at higher price points.
Entries are only ever invalidated by TTL.
"""
from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from capacity_gate.core.logger import LoggerMixin
from capacity_gate.models.admission import CacheEntry
from capacity_gate.models.tiers import TierConfig
from capacity_gate.services.store import KeyValueStore

_WHITESPACE = re.compile(r"\s+")


def normalize_content(content: Any) -> Any:
    """Collapse whitespace in text input so trivially different requests share a key"""
    if isinstance(content, str):
        return _WHITESPACE.sub(" ", content).strip()
    return content


def fingerprint(tier: str, operation: str, content: Any, options: Optional[Dict[str, Any]] = None) -> str:
    """Content-addressed cache key for (tier, operation, normalized input, options)"""
    key_data = json.dumps(
        {
            "tier": tier.upper(),
            "operation": operation,
            "content": normalize_content(content),
            "options": options or {},
        },
        sort_keys=True,
        default=str,
    )
    digest = hashlib.sha256(key_data.encode("utf-8")).hexdigest()
    return f"result:{tier.upper()}:{operation}:{digest}"


class ResultCache(LoggerMixin):

    def __init__(
        self,
        store: KeyValueStore,
        enabled: bool = True,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.enabled = enabled
        self.clock = clock

    def is_enabled_for(self, tier: TierConfig) -> bool:
        return self.enabled and tier.cache_enabled and tier.cache_ttl_seconds > 0

    async def lookup(self, key: str, tier: TierConfig) -> Optional[CacheEntry]:
        """Return the live entry for ``key`` or None"""
        if not self.is_enabled_for(tier):
            return None
        raw = await self.store.get(key)
        if raw is None:
            self.logger.debug(f"Cache miss: {key}")
            return None

        try:
            data = json.loads(raw)
            entry = CacheEntry(
                fingerprint=key,
                payload=data["payload"],
                tier=data["tier"],
                expires_at=datetime.fromisoformat(data["expires_at"]),
            )
            expired = entry.expires_at <= self.clock()
        except (ValueError, KeyError, TypeError) as e:
            # unreadable entries count as misses and get overwritten by the next put
            self.logger.warning(f"Ignoring corrupt cache entry {key}: {e!r}")
            return None

        if expired:
            return None
        self.logger.debug(f"Cache hit: {key}")
        return entry

    async def put(self, key: str, payload: Any, tier: TierConfig) -> Optional[CacheEntry]:
        """Store ``payload`` for the tier's TTL.

        Raises TypeError or ValueError when the payload is not JSON serializable.
        """
        if not self.is_enabled_for(tier):
            return None
        ttl = tier.cache_ttl_seconds
        expires_at = self.clock() + timedelta(seconds=ttl)
        value = json.dumps({"payload": payload, "tier": tier.name, "expires_at": expires_at.isoformat()})
        await self.store.set(key, value, ttl)
        self.logger.debug(f"Cached key: {key} (TTL: {ttl}s)")
        return CacheEntry(fingerprint=key, payload=payload, tier=tier.name, expires_at=expires_at)
