"""
LendTrust — Loan-Level Social Support Aggregator

How well-connected are a loan's current lenders to its borrower?

    connected lender   — shares ≥ 5 mutual connections with the borrower
    percent connected  — connected / total lenders
    support tier       — STRONG ≥ 60%, MODERATE ≥ 30%, WEAK > 0%, else NONE

Results are cached per (borrower, lender set) for 30 minutes. The lender
set can change between loan events; staleness inside that window is
accepted.
"""
import asyncio
from typing import List, Optional, Sequence

import structlog

from lendtrust.compute.cache import normalize_address, support_key, with_cache
from lendtrust.config import ScoringConfig
from lendtrust.trust.models import Identity, LenderDetail, LoanSocialSupport, SupportTier, round_half_up

logger = structlog.get_logger()


def support_tier(percent_connected: float, config: ScoringConfig) -> SupportTier:
    if percent_connected >= config.strong_support_pct:
        return SupportTier.STRONG
    if percent_connected >= config.moderate_support_pct:
        return SupportTier.MODERATE
    if percent_connected > 0:
        return SupportTier.WEAK
    return SupportTier.NONE


def aggregate_support(details: List[LenderDetail], config: ScoringConfig) -> LoanSocialSupport:
    total = len(details)
    if total == 0:
        return LoanSocialSupport.empty()

    connected = sum(1 for d in details if d.is_connected)
    average = sum(d.mutual_connections for d in details) / total
    percent = min(max(round_half_up(connected / total * 100), 0), 100)

    return LoanSocialSupport(
        total_lenders=total,
        connected_lender_count=connected,
        average_mutual_connections=round_half_up(average, 1),
        percent_connected=percent,
        support_tier=support_tier(percent, config),
        lender_details=details,
    )


def describe_support(support: LoanSocialSupport) -> str:
    """Human-readable summary of a loan's social support."""
    n, total = support.connected_lender_count, support.total_lenders
    if total == 0:
        return "No lenders yet"
    if support.support_tier == SupportTier.STRONG:
        return (f"Strong social support: {n} of {total} lenders are connected to borrower "
                f"(avg {support.average_mutual_connections} mutual connections)")
    if support.support_tier == SupportTier.MODERATE:
        return f"Moderate social support: {n} of {total} lenders share connections with borrower"
    if support.support_tier == SupportTier.WEAK:
        return f"Limited social support: {n} of {total} lenders connected"
    if total == 1:
        return "Lender has no known connections to borrower"
    return "Lenders have no known connections to borrower"


class LoanSupportAggregator:
    """
    Usage:
        aggregator = LoanSupportAggregator(resolver, proximity_engine, cache, config)
        support = await aggregator.compute("0xborrower", ["0xlender1", "0xlender2"])
    """

    def __init__(self, resolver, proximity, cache, config: ScoringConfig):
        self._resolver = resolver
        self._proximity = proximity
        self._cache = cache
        self._config = config

    async def compute(self, borrower_address: str, lender_addresses: Sequence[str]) -> LoanSocialSupport:
        """Never raises; failures return the zeroed NONE result."""
        lenders = _unique_lenders(lender_addresses)
        if not lenders:
            return LoanSocialSupport.empty()

        key = support_key(borrower_address, lenders)
        try:
            return await with_cache(
                self._cache, key, self._config.support_ttl,
                lambda: self._compute(borrower_address, lenders),
            )
        except Exception as e:
            logger.error("loan_support_failed", borrower=borrower_address, lenders=len(lenders), error=str(e))
            return LoanSocialSupport.empty(total_lenders=len(lenders))

    async def _compute(self, borrower_address: str, lenders: List[str]) -> LoanSocialSupport:
        borrower = await self._resolver.resolve(borrower_address)
        if borrower is None:
            logger.info("loan_support_no_borrower_profile", borrower=borrower_address)
            return LoanSocialSupport.empty(total_lenders=len(lenders))

        identities = await self._resolver.resolve_many(lenders)
        details = await asyncio.gather(*[
            self._lender_detail(borrower, address, identities.get(address)) for address in lenders
        ])

        support = aggregate_support(list(details), self._config)
        logger.info(
            "loan_support_computed",
            borrower=borrower_address, lenders=support.total_lenders,
            connected=support.connected_lender_count, tier=support.support_tier.value,
        )
        return support

    async def _lender_detail(
        self, borrower: Identity, address: str, lender: Optional[Identity],
    ) -> LenderDetail:
        if lender is None:
            return LenderDetail(address=address, mutual_connections=0, is_connected=False)

        proximity = await self._proximity.compute(
            borrower.fid, lender.fid, borrower.quality_score, lender.quality_score,
        )
        return LenderDetail(
            address=address,
            fid=lender.fid,
            mutual_connections=proximity.mutual_count,
            is_connected=proximity.mutual_count >= self._config.connected_threshold,
        )


def _unique_lenders(addresses: Sequence[str]) -> List[str]:
    """Lowercased, de-duplicated, order-preserving."""
    seen = set()
    out = []
    for a in addresses or []:
        if not a or not a.strip():
            continue
        norm = normalize_address(a)
        if norm not in seen:
            seen.add(norm)
            out.append(norm)
    return out
