"""
LendTrust — Social Graph Client + Identity Resolver

Cache-fronted access to the social graph provider. Everything the scoring
engines read about a social identity comes through here.
"""
import asyncio
from typing import Dict, List, Optional, Sequence

import structlog

from lendtrust.compute.cache import graph_key, normalize_address, profile_key, with_cache
from lendtrust.compute.fanout import gather_with_fallback
from lendtrust.config import ScoringConfig
from lendtrust.trust.models import Identity, Network

logger = structlog.get_logger()


class SocialGraphClient:
    """Followers / following lists per fid, cached for the profile TTL."""

    def __init__(self, provider, cache, config: ScoringConfig, page_limit: int = 150):
        self._provider = provider
        self._cache = cache
        self._config = config
        self._page_limit = page_limit
        self._pending_degrees: Dict[int, asyncio.Future] = {}

    async def followers(self, fid: int) -> frozenset:
        async def fetch():
            return frozenset(await self._provider.fetch_followers(fid))
        return await with_cache(
            self._cache, graph_key("followers", fid, self._page_limit), self._config.profile_ttl, fetch,
        )

    async def following(self, fid: int) -> frozenset:
        async def fetch():
            return frozenset(await self._provider.fetch_following(fid))
        return await with_cache(
            self._cache, graph_key("following", fid, self._page_limit), self._config.profile_ttl, fetch,
        )

    async def network(self, fid: int) -> Network:
        """Followers and following; a failed list degrades to empty."""
        followers, following = await gather_with_fallback(
            [self.followers(fid), self.following(fid)],
            fallback=frozenset(),
            timeout=self._config.fetch_timeout,
            name=f"network:{fid}",
        )
        return Network(followers=followers, following=following)

    async def degree(self, fid: int) -> int:
        """
        |followers| + |following|. Raises if either list cannot be fetched.
        Concurrent lookups for the same fid share one fetch.
        """
        task = self._pending_degrees.get(fid)
        if task is None:
            task = asyncio.ensure_future(self._fetch_degree(fid))
            self._pending_degrees[fid] = task
            task.add_done_callback(lambda _t, f=fid: self._pending_degrees.pop(f, None))
        return await asyncio.shield(task)

    async def _fetch_degree(self, fid: int) -> int:
        followers, following = await asyncio.gather(self.followers(fid), self.following(fid))
        return len(followers) + len(following)


class IdentityResolver:
    """
    Wallet address → zero-or-one social identity.

    Lookups are cached per address, including negative results, and
    identical batch lookups already in flight are joined rather than
    re-issued.
    """

    def __init__(self, provider, cache, config: ScoringConfig):
        self._provider = provider
        self._cache = cache
        self._config = config
        self._pending: Dict[str, asyncio.Future] = {}

    async def resolve(self, address: Optional[str]) -> Optional[Identity]:
        if not address or not address.strip():
            return None
        resolved = await self.resolve_many([address])
        return resolved.get(normalize_address(address))

    async def resolve_many(self, addresses: Sequence[str]) -> Dict[str, Optional[Identity]]:
        """Resolve every address with at most one provider call for the misses."""
        wanted = sorted({normalize_address(a) for a in addresses if a and a.strip()})
        result: Dict[str, Optional[Identity]] = {}
        missing: List[str] = []

        for address in wanted:
            hit = self._cache.get(profile_key(address), _UNSET)
            if hit is _UNSET:
                missing.append(address)
            else:
                result[address] = hit

        if missing:
            raw = await self._fetch_batch(missing)
            fetched = {normalize_address(k): v for k, v in raw.items()}
            for address in missing:
                identity = fetched.get(address)
                self._cache.set(profile_key(address), identity, self._config.profile_ttl)
                result[address] = identity
            logger.debug("identities_resolved", requested=len(missing), found=sum(1 for a in missing if fetched.get(a)))

        return result

    async def _fetch_batch(self, addresses: List[str]) -> Dict[str, Identity]:
        key = ",".join(addresses)
        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._provider.fetch_profiles_by_addresses(addresses))
            self._pending[key] = task
            task.add_done_callback(lambda _t, k=key: self._pending.pop(k, None))
        else:
            logger.debug("identity_lookup_deduplicated", addresses=len(addresses))
        return await asyncio.shield(task)


_UNSET = object()
