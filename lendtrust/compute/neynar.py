"""
LendTrust — Social Graph Provider (Neynar / Farcaster)

Raw facts only. No scoring logic.

    fetch_followers(fid)                  → [fid, ...]
    fetch_following(fid)                  → [fid, ...]
    fetch_profile_by_address(address)     → Identity | None
    fetch_profiles_by_addresses([addr])   → {address: Identity}

Most wallets have no Farcaster account. A 404 or an address missing from
the bulk response is a normal outcome, not an error. Every other non-2xx
response raises GraphProviderError so the caller can apply its fallback.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from lendtrust.compute.cache import normalize_address
from lendtrust.compute.fanout import CircuitBreaker
from lendtrust.errors import GraphProviderError
from lendtrust.trust.models import Identity

logger = structlog.get_logger()

_TIMEOUT = httpx.Timeout(10.0, connect=5.0)
_PAGE_MAX = 100          # Neynar page size ceiling for follower endpoints
_BULK_MAX = 350          # addresses per bulk-by-address call


class SocialGraphProvider(Protocol):
    async def fetch_followers(self, fid: int) -> List[int]: ...
    async def fetch_following(self, fid: int) -> List[int]: ...
    async def fetch_profile_by_address(self, address: str) -> Optional[Identity]: ...
    async def fetch_profiles_by_addresses(self, addresses: Sequence[str]) -> Dict[str, Identity]: ...


# ── Response models ───────────────────────────────

class VerifiedAddresses(BaseModel):
    model_config = ConfigDict(extra="ignore")
    eth_addresses: List[str] = Field(default_factory=list)


class NeynarUser(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fid: int
    username: str = ""
    display_name: Optional[str] = None
    follower_count: int = 0
    following_count: int = 0
    power_badge: bool = False
    score: Optional[float] = None
    experimental: Dict[str, Any] = Field(default_factory=dict)
    verified_addresses: VerifiedAddresses = Field(default_factory=VerifiedAddresses)
    registered_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("registered_at", "timestamp"),
    )

    @property
    def quality(self) -> Optional[float]:
        raw = self.score
        if raw is None:
            raw = self.experimental.get("neynar_user_score")
        if raw is None:
            return None
        return min(max(float(raw), 0.0), 1.0)

    def to_identity(self, now: Optional[datetime] = None) -> Identity:
        age_days = 0
        if self.registered_at is not None:
            now = now or datetime.now(timezone.utc)
            registered = self.registered_at
            if registered.tzinfo is None:
                registered = registered.replace(tzinfo=timezone.utc)
            age_days = max((now - registered).days, 0)
        return Identity(
            fid=self.fid,
            username=self.username,
            display_name=self.display_name or self.username,
            quality_score=self.quality,
            verified_wallets=tuple(normalize_address(a) for a in self.verified_addresses.eth_addresses),
            follower_count=max(self.follower_count, 0),
            following_count=max(self.following_count, 0),
            power_badge=self.power_badge,
            account_age_days=age_days,
        )


def _fids_from_page(payload: Dict[str, Any]) -> List[int]:
    """Follower pages list either bare users or {"user": {...}} wrappers."""
    fids = []
    for item in payload.get("users") or []:
        if not isinstance(item, dict):
            continue
        user = item.get("user", item)
        fid = user.get("fid") if isinstance(user, dict) else None
        if isinstance(fid, int):
            fids.append(fid)
    return fids


# ── Client ────────────────────────────────────────

class NeynarProvider:
    """
    Neynar v2 API client.

    Usage:
        provider = NeynarProvider(api_key="...")
        followers = await provider.fetch_followers(3)
        await provider.aclose()
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.neynar.com/v2",
        page_limit: int = 150,
        client: Optional[httpx.AsyncClient] = None,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._page_limit = page_limit
        self._client = client
        self._breaker = breaker or CircuitBreaker("neynar", threshold=5, recovery_timeout=60)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key) and self._api_key != "your_neynar_api_key_here"

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={"accept": "application/json", "api_key": self._api_key},
                timeout=_TIMEOUT,
            )
        return self._client

    async def _get(self, path: str, params: Any) -> Optional[Dict[str, Any]]:
        """GET a JSON document. Returns None on 404, raises on other errors."""
        return await self._breaker.call(self._request, path, params)

    async def _request(self, path: str, params: Any) -> Optional[Dict[str, Any]]:
        try:
            resp = await self._http().get(path, params=params)
        except httpx.HTTPError as e:
            raise GraphProviderError(f"{path}: {type(e).__name__}: {e}") from e

        if resp.status_code == 404:
            return None
        if resp.status_code == 429:
            logger.warning("neynar_rate_limited", path=path)
        if resp.status_code >= 400:
            raise GraphProviderError(f"{path}: HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise GraphProviderError(f"{path}: invalid JSON") from e

    async def _fetch_graph(self, path: str, fid: int) -> List[int]:
        if not self.enabled:
            return []

        fids: List[int] = []
        cursor = None
        while len(fids) < self._page_limit:
            params = {"fid": fid, "limit": min(_PAGE_MAX, self._page_limit - len(fids))}
            if cursor:
                params["cursor"] = cursor
            payload = await self._get(path, params)
            if not payload:
                break
            page = _fids_from_page(payload)
            fids.extend(page)
            cursor = (payload.get("next") or {}).get("cursor")
            if not cursor or not page:
                break
        return fids[: self._page_limit]

    async def fetch_followers(self, fid: int) -> List[int]:
        return await self._fetch_graph("/farcaster/followers", fid)

    async def fetch_following(self, fid: int) -> List[int]:
        return await self._fetch_graph("/farcaster/following", fid)

    async def fetch_profiles_by_addresses(self, addresses: Sequence[str]) -> Dict[str, Identity]:
        if not self.enabled:
            logger.debug("neynar_disabled")
            return {}

        wanted = sorted({normalize_address(a) for a in addresses if a})
        if not wanted:
            return {}

        chunks = [wanted[i:i + _BULK_MAX] for i in range(0, len(wanted), _BULK_MAX)]
        payloads = await asyncio.gather(*[
            self._get("/farcaster/user/bulk-by-address", {"addresses": ",".join(chunk)})
            for chunk in chunks
        ])

        profiles: Dict[str, Identity] = {}
        for payload in payloads:
            for address, users in (payload or {}).items():
                if not isinstance(users, list) or not users:
                    continue
                try:
                    user = NeynarUser.model_validate(users[0])
                except ValidationError as e:
                    logger.warning("neynar_user_invalid", address=address, error=str(e)[:200])
                    continue
                profiles[normalize_address(address)] = user.to_identity()
        return profiles

    async def fetch_profile_by_address(self, address: str) -> Optional[Identity]:
        profiles = await self.fetch_profiles_by_addresses([address])
        return profiles.get(normalize_address(address))

    def status(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "breaker": self._breaker.status()}

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
