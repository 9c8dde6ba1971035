"""
LendTrust — Scoring Pipeline
The three caller entry points, wired to their data sources.

    proximity(borrower, viewer)        → ProximityScore
    reputation(address)                → ReputationScore | None
    loan_support(borrower, lenders)    → LoanSocialSupport

Flow:
    Address → Identity Resolver → Proximity Engine (fans out to the cached
    Social Graph Client) → Composite / Loan-level aggregator → bounded score

Every entry point is a pure function of its inputs plus cache state. None
of them raise: callers gate financial decisions on these scores and always
get a well-formed, conservative answer.
"""
import asyncio
from typing import Optional, Sequence

import structlog

from lendtrust.compute.cache import build_cache, normalize_address
from lendtrust.compute.chain import BaseChainClient
from lendtrust.compute.graph import IdentityResolver, SocialGraphClient
from lendtrust.compute.neynar import NeynarProvider
from lendtrust.config import ScoringConfig, Settings, get_settings
from lendtrust.trust.models import LoanSocialSupport, ProximityScore, ReputationScore
from lendtrust.trust.proximity import ProximityEngine
from lendtrust.trust.reputation import ReputationAggregator
from lendtrust.trust.support import LoanSupportAggregator
from lendtrust.trust.wallet import WalletActivityAnalyzer

logger = structlog.get_logger()


class ScoringService:
    def __init__(self, graph_provider, chain_provider, cache, config: Optional[ScoringConfig] = None,
                 page_limit: int = 150):
        self.config = config or ScoringConfig()
        self.cache = cache
        self.graph_provider = graph_provider
        self.chain_provider = chain_provider

        self.resolver = IdentityResolver(graph_provider, cache, self.config)
        self.graph = SocialGraphClient(graph_provider, cache, self.config, page_limit=page_limit)
        self.proximity_engine = ProximityEngine(self.graph, cache, self.config)
        self.wallet_analyzer = WalletActivityAnalyzer(
            chain_provider, timeout=self.config.fetch_timeout, cache=cache, ttl=self.config.profile_ttl,
        )
        self.reputation_aggregator = ReputationAggregator(self.resolver, self.wallet_analyzer)
        self.support_aggregator = LoanSupportAggregator(self.resolver, self.proximity_engine, cache, self.config)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringService":
        config = ScoringConfig.from_settings(settings)
        provider = NeynarProvider(
            api_key=settings.NEYNAR_API_KEY,
            base_url=settings.NEYNAR_API_BASE,
            page_limit=settings.GRAPH_PAGE_LIMIT,
        )
        chain = BaseChainClient(
            rpc_url=settings.BASE_RPC_URL,
            explorer_url=settings.BASESCAN_API_URL,
            explorer_key=settings.BASESCAN_API_KEY,
        )
        return cls(provider, chain, build_cache(settings), config, page_limit=settings.GRAPH_PAGE_LIMIT)

    async def proximity(self, borrower_address: str, viewer_address: str) -> ProximityScore:
        """Pairwise proximity by wallet; unknown parties are HIGH risk."""
        try:
            identities = await self.resolver.resolve_many([borrower_address, viewer_address])
        except Exception as e:
            logger.error("proximity_resolve_failed", borrower=borrower_address, viewer=viewer_address, error=str(e))
            return ProximityScore.no_connection()

        borrower = identities.get(normalize_address(borrower_address))
        viewer = identities.get(normalize_address(viewer_address))
        if borrower is None or viewer is None:
            return ProximityScore.no_connection()
        return await self.proximity_engine.compute(
            borrower.fid, viewer.fid, borrower.quality_score, viewer.quality_score,
        )

    async def proximity_by_fid(
        self,
        borrower_fid: int,
        viewer_fid: int,
        borrower_quality: Optional[float] = None,
        viewer_quality: Optional[float] = None,
    ) -> ProximityScore:
        return await self.proximity_engine.compute(borrower_fid, viewer_fid, borrower_quality, viewer_quality)

    async def reputation(self, address: Optional[str]) -> Optional[ReputationScore]:
        try:
            return await self.reputation_aggregator.compute(address)
        except Exception as e:
            logger.error("reputation_failed", address=address, error=str(e))
            return ReputationScore.zeroed()

    async def loan_support(self, borrower_address: str, lender_addresses: Sequence[str]) -> LoanSocialSupport:
        return await self.support_aggregator.compute(borrower_address, lender_addresses)

    def cache_stats(self):
        stats = self.cache.stats()
        if hasattr(self.graph_provider, "status"):
            stats["graph_provider"] = self.graph_provider.status()
        return stats

    async def aclose(self) -> None:
        closers = [p.aclose() for p in (self.graph_provider, self.chain_provider) if hasattr(p, "aclose")]
        await asyncio.gather(*closers, return_exceptions=True)
        self.cache.close()


# Singleton instance (initialized on first use)
_service: Optional[ScoringService] = None


def get_service() -> ScoringService:
    global _service
    if _service is None:
        _service = ScoringService.from_settings(get_settings())
    return _service


async def shutdown() -> None:
    global _service
    if _service is not None:
        await _service.aclose()
        _service = None
