"""
LendTrust — Cache Layer

Every expensive external call and every aggregate computation goes through
`with_cache` so the social graph is not re-crawled on every request.

Cache Strategy:
    - Profiles, follower lists, pairwise proximity: TTL = 5 min
    - Loan-level support aggregates:                TTL = 30 min
    - Failures are never cached (the compute raises before `set`)

Backends:
    MemoryCache — in-process dict, injectable clock, bounded size
    RedisCache  — shared across workers; fail-open when Redis is down

Entries expire by TTL only; nothing is invalidated on write elsewhere.
"""
import hashlib
import pickle
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple

import redis
import structlog

logger = structlog.get_logger()

_MISS = object()


# ── Canonical keys ────────────────────────────────

def normalize_address(address: str) -> str:
    return address.strip().lower()


def profile_key(address: str) -> str:
    return f"profile:{normalize_address(address)}"


def graph_key(kind: str, fid: int, limit: int) -> str:
    return f"{kind}:{fid}:{limit}"


def proximity_key(
    borrower_id: int,
    viewer_id: int,
    borrower_quality: Optional[float],
    viewer_quality: Optional[float],
) -> str:
    return f"proximity:{borrower_id}:{viewer_id}:{borrower_quality}:{viewer_quality}"


def wallet_key(address: str) -> str:
    return f"wallet:{normalize_address(address)}"


def support_key(borrower_address: str, lender_addresses: Iterable[str]) -> str:
    """Order-independent key: the same lender set always hits the same entry."""
    lenders = sorted({normalize_address(a) for a in lender_addresses})
    digest = hashlib.sha256(",".join(lenders).encode("utf-8")).hexdigest()[:24]
    return f"support:{normalize_address(borrower_address)}:{digest}"


# ── In-memory backend ─────────────────────────────

class MemoryCache:
    """
    Process-local TTL cache.

    Usage:
        cache = MemoryCache(max_entries=500)
        cache.set("profile:0xabc", identity, ttl=300)
        cache.get("profile:0xabc")   # -> identity, or None once expired

    `clock` returns seconds; tests pass a fake to move time without sleeping.
    """

    def __init__(self, max_entries: int = 5000, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[Any, float]] = {}
        self._max_entries = max_entries
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            self.misses += 1
            return default
        self.hits += 1
        return value

    def set(self, key: str, value: Any, ttl: int) -> None:
        if key not in self._entries and len(self._entries) >= self._max_entries:
            # dicts keep insertion order, so the first key is the oldest
            oldest = next(iter(self._entries), None)
            if oldest is not None:
                self._entries.pop(oldest, None)
        self._entries[key] = (value, self._clock() + ttl)

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def cleanup(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        expired = [k for k, (_, exp) in self._entries.items() if now >= exp]
        for k in expired:
            self._entries.pop(k, None)
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "enabled": True,
            "size": len(self._entries),
            "max_entries": self._max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }

    def close(self) -> None:
        self.clear()


# ── Redis backend ─────────────────────────────────

class RedisCache:
    """
    Redis-backed cache shared by every worker process.

    Values are pickled so typed results survive the round trip.
    If Redis is unreachable the cache disables itself and every
    lookup is a miss: scoring still works, it just recomputes.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0", prefix: str = "lendtrust", client=None):
        self._url = redis_url
        self._prefix = prefix
        self._pool = None
        self._client = client
        self._enabled = True

    def _connect(self) -> "redis.Redis | None":
        """Lazy connect — only opens connection when first used."""
        if self._client is None and self._enabled:
            try:
                self._pool = redis.ConnectionPool.from_url(
                    self._url,
                    max_connections=20,
                    socket_connect_timeout=3,
                    socket_timeout=2,
                    retry_on_timeout=True,
                )
                self._client = redis.Redis(connection_pool=self._pool)
                self._client.ping()
                logger.info("cache_connected", url=self._url.split("@")[-1])
            except Exception as e:
                logger.warning("cache_unavailable", error=str(e))
                self._enabled = False
                self._client = None
        return self._client

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    def get(self, key: str, default: Any = None) -> Any:
        client = self._connect()
        if not client:
            return default
        try:
            raw = client.get(self._key(key))
        except Exception as e:
            logger.debug("cache_get_error", key=key[:60], error=str(e))
            return default
        if raw is None:
            return default
        return pickle.loads(raw)

    def set(self, key: str, value: Any, ttl: int) -> None:
        client = self._connect()
        if not client:
            return
        try:
            client.setex(self._key(key), ttl, pickle.dumps(value))
        except Exception as e:
            logger.debug("cache_set_error", key=key[:60], error=str(e))

    def delete(self, key: str) -> bool:
        client = self._connect()
        if not client:
            return False
        try:
            return bool(client.delete(self._key(key)))
        except Exception:
            return False

    def clear(self) -> None:
        client = self._connect()
        if not client:
            return
        for k in client.scan_iter(match=f"{self._prefix}:*"):
            client.delete(k)

    def stats(self) -> Dict[str, Any]:
        client = self._connect()
        if not client:
            return {"backend": "redis", "enabled": False}
        try:
            info = client.info("memory")
            size = sum(1 for _ in client.scan_iter(match=f"{self._prefix}:*"))
            return {
                "backend": "redis",
                "enabled": True,
                "size": size,
                "memory_used": info.get("used_memory_human", "?"),
            }
        except Exception as e:
            return {"backend": "redis", "enabled": True, "connected": False, "error": str(e)}

    def close(self) -> None:
        if self._pool:
            self._pool.disconnect()
            logger.info("cache_disconnected")


# ── Memoizer ──────────────────────────────────────

async def with_cache(cache, key: str, ttl: int, compute_fn: Callable[[], Awaitable[Any]]) -> Any:
    """
    Return the cached value for `key`, or compute, store and return it.

    `None` is a legitimate cached value (an address with no profile).
    Concurrent callers racing on the same key may both compute; the last
    write wins and both writes hold the same content.
    """
    value = cache.get(key, _MISS)
    if value is not _MISS:
        logger.debug("cache_hit", key=key[:60])
        return value
    result = await compute_fn()
    cache.set(key, result, ttl)
    return result


def build_cache(settings):
    if settings.CACHE_BACKEND == "redis":
        return RedisCache(settings.REDIS_URL)
    return MemoryCache(max_entries=settings.CACHE_MAX_ENTRIES)
