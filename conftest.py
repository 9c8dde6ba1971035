"""
Shared fixtures: an in-memory social graph, a fake chain and a fake clock.
Nothing here touches the network.
"""
from collections import Counter

import pytest

from lendtrust.compute.cache import MemoryCache
from lendtrust.compute.pipeline import ScoringService
from lendtrust.config import ScoringConfig
from lendtrust.errors import ChainProviderError, GraphProviderError
from lendtrust.trust.models import Identity

BORROWER = "0x" + "b" * 40
LENDER_CLOSE = "0x" + "1" * 40
LENDER_FAR = "0x" + "2" * 40
LENDER_NO_PROFILE = "0x" + "3" * 40

MUTUALS = list(range(100, 108))      # 8 shared contacts between borrower (fid 1) and lender fid 2


class FakeClock:
    def __init__(self, t: float = 1_000.0):
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds


class FakeGraphProvider:
    """Dict-backed stand-in for the Neynar API with per-method call counters."""

    def __init__(self, followers=None, following=None, profiles=None):
        self.followers = followers or {}
        self.following = following or {}
        self.profiles = {k.lower(): v for k, v in (profiles or {}).items()}
        self.failing_fids = set()
        self.fail_everything = False
        self.calls = Counter()

    def _check(self, fid=None):
        if self.fail_everything or (fid is not None and fid in self.failing_fids):
            raise GraphProviderError("provider down", status_code=503)

    async def fetch_followers(self, fid):
        self.calls["followers"] += 1
        self._check(fid)
        return list(self.followers.get(fid, []))

    async def fetch_following(self, fid):
        self.calls["following"] += 1
        self._check(fid)
        return list(self.following.get(fid, []))

    async def fetch_profiles_by_addresses(self, addresses):
        self.calls["profiles"] += 1
        self._check()
        return {a.lower(): self.profiles[a.lower()] for a in addresses if a.lower() in self.profiles}

    async def fetch_profile_by_address(self, address):
        found = await self.fetch_profiles_by_addresses([address])
        return found.get(address.lower())

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())


class FakeChain:
    def __init__(self, balance=0, nonce=0, txs=None, explorer=False, broken=False):
        self.balance = balance
        self.nonce = nonce
        self.txs = txs or []
        self.explorer_enabled = explorer
        self.broken = broken
        self.calls = Counter()

    async def get_balance(self, address):
        self.calls["balance"] += 1
        if self.broken:
            raise ChainProviderError("rpc down")
        return self.balance

    async def get_transaction_count(self, address):
        self.calls["nonce"] += 1
        if self.broken:
            raise ChainProviderError("rpc down")
        return self.nonce

    async def get_transactions(self, address):
        self.calls["txlist"] += 1
        if self.broken:
            raise ChainProviderError("explorer down")
        return list(self.txs)


def build_lending_graph() -> FakeGraphProvider:
    return FakeGraphProvider(
        followers={
            1: MUTUALS + list(range(500, 510)),
            3: [100] + list(range(600, 610)),
        },
        following={
            1: [2],
            2: MUTUALS + [1],
        },
        profiles={
            BORROWER: Identity(fid=1, username="borrower", quality_score=0.9,
                               follower_count=1200, following_count=300, account_age_days=400),
            LENDER_CLOSE: Identity(fid=2, username="close", quality_score=0.9),
            LENDER_FAR: Identity(fid=3, username="far", quality_score=0.5),
        },
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return ScoringConfig(fetch_timeout=2.0)


@pytest.fixture
def provider():
    return build_lending_graph()


@pytest.fixture
def chain():
    return FakeChain(balance=10**17, nonce=12)


@pytest.fixture
def cache(clock):
    return MemoryCache(max_entries=1000, clock=clock)


@pytest.fixture
def service(provider, chain, cache, config):
    return ScoringService(provider, chain, cache, config)
