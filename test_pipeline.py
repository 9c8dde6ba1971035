"""
End-to-end scoring against the in-memory graph from conftest.

Borrower (fid 1) and LENDER_CLOSE (fid 2) share 8 contacts and follow each
other. LENDER_FAR (fid 3) shares one contact. LENDER_NO_PROFILE has no
social account at all.
"""
import asyncio
import math
from collections import Counter

import pytest

from conftest import (
    BORROWER,
    LENDER_CLOSE,
    LENDER_FAR,
    LENDER_NO_PROFILE,
    MUTUALS,
    FakeChain,
    FakeGraphProvider,
)
from lendtrust.compute.cache import MemoryCache
from lendtrust.compute.graph import IdentityResolver
from lendtrust.compute.pipeline import ScoringService
from lendtrust.config import ScoringConfig
from lendtrust.errors import ChainProviderError
from lendtrust.trust.models import Identity, QualityTier, RiskTier, SupportTier
from lendtrust.trust.wallet import WalletActivityAnalyzer


def run(coro):
    return asyncio.run(coro)


# ── Pairwise proximity ───────────────────────────────────

def test_close_lender_is_low_risk(service):
    score = run(service.proximity(BORROWER, LENDER_CLOSE))
    assert score.mutual_count == 8
    assert score.effective_mutual_weight == 7.2        # 8 x 1.0 x avg quality 0.9
    assert score.overlap_percent == pytest.approx(40.0)
    assert score.social_distance == 75                 # 35 + 30 overlap + 10 mutual follow
    assert score.risk_tier == RiskTier.LOW
    assert score.quality_tier == QualityTier.HIGH
    assert score.borrower_followers == 18


def test_proximity_is_symmetric(service):
    forward = run(service.proximity(BORROWER, LENDER_CLOSE))
    backward = run(service.proximity(LENDER_CLOSE, BORROWER))
    assert forward.mutual_count == backward.mutual_count
    assert forward.effective_mutual_weight == backward.effective_mutual_weight
    assert forward.social_distance == backward.social_distance
    assert forward.risk_tier == backward.risk_tier


def test_one_shared_contact_is_high_risk(service):
    score = run(service.proximity(BORROWER, LENDER_FAR))
    assert score.mutual_count == 1
    assert score.effective_mutual_weight == 0.7
    assert score.social_distance == 0
    assert score.risk_tier == RiskTier.HIGH


def test_missing_profile_is_no_connection(service, provider):
    score = run(service.proximity(BORROWER, LENDER_NO_PROFILE))
    assert score.mutual_count == 0
    assert score.risk_tier == RiskTier.HIGH
    assert provider.calls["followers"] == 0


def test_provider_outage_is_high_risk(service, provider):
    provider.fail_everything = True
    score = run(service.proximity(BORROWER, LENDER_CLOSE))
    assert score.risk_tier == RiskTier.HIGH
    assert score.mutual_count == 0


def test_graph_outage_by_fid_degrades_to_empty_networks(service, provider):
    provider.fail_everything = True
    score = run(service.proximity_by_fid(1, 2, 0.9, 0.9))
    assert score.mutual_count == 0
    assert score.social_distance == 0
    assert score.risk_tier == RiskTier.HIGH


def test_failed_degree_lookup_uses_default_degree(service, provider):
    provider.failing_fids = set(MUTUALS)
    score = run(service.proximity(BORROWER, LENDER_CLOSE))
    expected = 8 / math.log(100) * 0.9
    assert score.mutual_count == 8
    assert score.effective_mutual_weight == round(expected, 1)
    assert score.social_distance == 50                 # 10 + 30 + 10
    assert score.risk_tier == RiskTier.MEDIUM


def test_proximity_is_cached(service, provider, clock):
    run(service.proximity(BORROWER, LENDER_CLOSE))
    calls = provider.total_calls
    assert calls > 0

    clock.advance(60)
    again = run(service.proximity(BORROWER, LENDER_CLOSE))
    assert again.mutual_count == 8
    assert provider.total_calls == calls

    clock.advance(301)
    run(service.proximity(BORROWER, LENDER_CLOSE))
    assert provider.total_calls > calls


def test_unknown_quality_uses_default(service):
    score = run(service.proximity_by_fid(1, 2))
    assert score.avg_quality == 0.7
    assert score.effective_mutual_weight == 5.6


def test_compute_batch(service):
    scores = run(service.proximity_engine.compute_batch(1, [2, 3]))
    assert set(scores) == {2, 3}
    assert scores[2].mutual_count == 8
    assert scores[3].mutual_count == 1


def test_missing_fid_is_no_connection(service, provider):
    score = run(service.proximity_engine.compute(None, 2))
    assert score.risk_tier == RiskTier.HIGH
    assert provider.total_calls == 0


# ── Identity resolution ──────────────────────────────────

def test_concurrent_identical_lookups_are_joined(provider, cache, config):
    resolver = IdentityResolver(provider, cache, config)

    async def both():
        return await asyncio.gather(
            resolver.resolve_many([BORROWER, LENDER_CLOSE]),
            resolver.resolve_many([LENDER_CLOSE, BORROWER]),
        )

    first, second = run(both())
    assert first[BORROWER].fid == 1
    assert second[LENDER_CLOSE].fid == 2
    assert provider.calls["profiles"] == 1


def test_negative_lookups_are_cached(provider, cache, config):
    resolver = IdentityResolver(provider, cache, config)
    assert run(resolver.resolve(LENDER_NO_PROFILE)) is None
    assert run(resolver.resolve(LENDER_NO_PROFILE.upper().replace("0X", "0x"))) is None
    assert provider.calls["profiles"] == 1


def test_resolve_blank_address(provider, cache, config):
    resolver = IdentityResolver(provider, cache, config)
    assert run(resolver.resolve("  ")) is None
    assert provider.total_calls == 0


# ── Loan-level support ───────────────────────────────────

def test_loan_support_moderate(service):
    support = run(service.loan_support(BORROWER, [LENDER_CLOSE, LENDER_FAR, LENDER_NO_PROFILE]))
    assert support.total_lenders == 3
    assert support.connected_lender_count == 1
    assert support.percent_connected == 33
    assert support.support_tier == SupportTier.MODERATE
    assert support.average_mutual_connections == 3.0

    details = {d.address: d for d in support.lender_details}
    assert details[LENDER_CLOSE].is_connected is True
    assert details[LENDER_CLOSE].fid == 2
    assert details[LENDER_FAR].mutual_connections == 1
    assert details[LENDER_NO_PROFILE].fid is None


def test_zero_lenders_makes_no_calls(service, provider):
    support = run(service.loan_support(BORROWER, []))
    assert support.total_lenders == 0
    assert support.support_tier == SupportTier.NONE
    assert support.lender_details == []
    assert provider.total_calls == 0


def test_unknown_borrower_has_no_support(service):
    support = run(service.loan_support(LENDER_NO_PROFILE, [LENDER_CLOSE, LENDER_FAR]))
    assert support.total_lenders == 2
    assert support.connected_lender_count == 0
    assert support.support_tier == SupportTier.NONE


def test_duplicate_lenders_count_once(service):
    support = run(service.loan_support(BORROWER, [LENDER_CLOSE, LENDER_CLOSE.upper().replace("0X", "0x")]))
    assert support.total_lenders == 1
    assert support.percent_connected == 100
    assert support.support_tier == SupportTier.STRONG


def test_loan_support_cached_for_lender_set(service, provider, clock):
    run(service.loan_support(BORROWER, [LENDER_CLOSE, LENDER_FAR]))
    calls = provider.total_calls

    clock.advance(600)      # past the profile TTL, inside the support TTL
    again = run(service.loan_support(BORROWER, [LENDER_FAR, LENDER_CLOSE]))
    assert again.connected_lender_count == 1
    assert provider.total_calls == calls

    clock.advance(1201)
    run(service.loan_support(BORROWER, [LENDER_CLOSE, LENDER_FAR]))
    assert provider.total_calls > calls


def test_loan_support_outage_is_none(service, provider):
    provider.fail_everything = True
    support = run(service.loan_support(BORROWER, [LENDER_CLOSE, LENDER_FAR]))
    assert support.total_lenders == 2
    assert support.support_tier == SupportTier.NONE


def test_outage_is_not_cached(service, provider):
    provider.fail_everything = True
    run(service.loan_support(BORROWER, [LENDER_CLOSE]))
    provider.fail_everything = False
    support = run(service.loan_support(BORROWER, [LENDER_CLOSE]))
    assert support.support_tier == SupportTier.STRONG


class SlowGraph(FakeGraphProvider):
    """Follower fetches take a moment; tracks how many watched fids are in flight."""

    def __init__(self, watched, **kwargs):
        super().__init__(**kwargs)
        self.watched = set(watched)
        self.in_flight = Counter()
        self.fetched = Counter()
        self.peak = 0

    async def _tracked(self, kind, fid, fetch):
        if fid not in self.watched:
            return await fetch(fid)
        self.fetched[(kind, fid)] += 1
        self.in_flight[fid] += 1
        self.peak = max(self.peak, sum(1 for n in self.in_flight.values() if n > 0))
        try:
            await asyncio.sleep(0.005)
            return await fetch(fid)
        finally:
            self.in_flight[fid] -= 1

    async def fetch_followers(self, fid):
        return await self._tracked("followers", fid, super().fetch_followers)

    async def fetch_following(self, fid):
        return await self._tracked("following", fid, super().fetch_following)


def test_degree_fetches_bounded_across_lenders(clock):
    shared = list(range(100, 120))
    lender_fids = list(range(11, 21))
    profiles = {"0x" + "b" * 40: Identity(fid=1, quality_score=0.9)}
    profiles.update({f"0x{fid:040x}": Identity(fid=fid, quality_score=0.9) for fid in lender_fids})
    provider = SlowGraph(
        watched=shared,
        followers={1: shared},
        following={fid: shared for fid in lender_fids},
        profiles=profiles,
    )
    config = ScoringConfig(fetch_timeout=5.0, degree_concurrency=2)
    service = ScoringService(provider, FakeChain(), MemoryCache(clock=clock), config)

    support = run(service.loan_support(BORROWER, [f"0x{fid:040x}" for fid in lender_fids]))

    assert support.total_lenders == 10
    assert support.connected_lender_count == 10
    assert support.support_tier == SupportTier.STRONG
    assert 0 < provider.peak <= 2
    # shared mutuals are looked up once, not once per lender
    assert set(provider.fetched.values()) == {1}
    assert len(provider.fetched) == 40


# ── Composite reputation ─────────────────────────────────

def test_reputation_with_profile_and_wallet(service):
    rep = run(service.reputation(BORROWER))
    assert rep.social_component == 25      # followers 7.2 + age 12 + engagement 6
    assert rep.wallet_component == 32      # nonce 12 -> age 36d, all four bands at 20 x 0.4
    assert rep.overall == 57
    assert rep.badges == {"has_power_badge": False, "has_social_profile": True}


def test_reputation_without_profile(service):
    rep = run(service.reputation(LENDER_NO_PROFILE))
    assert rep.social_component == 0
    assert rep.wallet_component == 32
    assert rep.overall == 32


def test_reputation_blank_address_is_none(service):
    assert run(service.reputation("")) is None
    assert run(service.reputation(None)) is None


def test_reputation_survives_chain_outage(provider, cache, config):
    service = ScoringService(provider, FakeChain(broken=True), cache, config)
    rep = run(service.reputation(BORROWER))
    assert rep.wallet_component == 0
    assert rep.social_component == 25
    assert 0 <= rep.overall <= 100


def test_reputation_survives_graph_outage(service, provider):
    provider.fail_everything = True
    rep = run(service.reputation(BORROWER))
    assert rep.social_component == 0
    assert rep.wallet_component == 32


def test_wallet_activity_is_cached(service, chain, clock):
    run(service.reputation(BORROWER))
    calls = sum(chain.calls.values())
    assert calls == 2                       # balance + nonce

    clock.advance(60)
    rep = run(service.reputation(BORROWER))
    assert rep.wallet_component == 32
    assert sum(chain.calls.values()) == calls

    clock.advance(301)
    run(service.reputation(BORROWER))
    assert sum(chain.calls.values()) == calls * 2


def test_unreadable_wallet_is_not_cached(provider, cache, config):
    chain = FakeChain(balance=10**17, nonce=12, broken=True)
    service = ScoringService(provider, chain, cache, config)
    assert run(service.reputation(BORROWER)).wallet_component == 0

    chain.broken = False
    assert run(service.reputation(BORROWER)).wallet_component == 32


# ── Wallet analyzer paths ────────────────────────────────

NOW = 1_700_000_000


class ExplorerDown(FakeChain):
    async def get_transactions(self, address):
        raise ChainProviderError("explorer down")


def test_wallet_prefers_explorer():
    txs = [{"timeStamp": str(NOW - 100 * 86400)}] + [{"timeStamp": str(NOW - 86400)}] * 24
    chain = FakeChain(balance=0, nonce=3, txs=txs, explorer=True)
    score = run(WalletActivityAnalyzer(chain, timeout=2.0, clock=lambda: NOW).analyze(BORROWER))
    assert score.source == "explorer"
    assert score.score == 80                # age 30, activity 30, recent 20, balance 0
    assert chain.calls["nonce"] == 0


def test_wallet_falls_back_to_rpc():
    chain = ExplorerDown(balance=5, nonce=2, explorer=True)
    score = run(WalletActivityAnalyzer(chain, timeout=2.0, clock=lambda: NOW).analyze(BORROWER))
    assert score.source == "rpc"
    assert score.metrics.account_age_days == 6
    assert score.score == 50                # age 0, activity 10, recent 20, balance 20


def test_wallet_unreadable_scores_zero():
    score = run(WalletActivityAnalyzer(FakeChain(broken=True), timeout=2.0).analyze(BORROWER))
    assert score.score == 0
    assert score.source == "none"


def test_cache_stats_reports_backend(service):
    stats = service.cache_stats()
    assert stats["backend"] == "memory"
    assert "graph_provider" not in stats


def test_service_close_clears_cache(service):
    run(service.proximity(BORROWER, LENDER_CLOSE))
    run(service.aclose())
    assert isinstance(service.cache, MemoryCache)
    assert service.cache.stats()["size"] == 0
