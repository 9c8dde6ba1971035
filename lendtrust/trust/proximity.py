"""
LendTrust — Pairwise Proximity Engine

How close is a viewer (usually a prospective lender) to a borrower in the
social graph? Borrowers whose lenders already know them repay more often,
so closeness lowers risk.

Pipeline:
    1. Networks     — followers ∪ following for both parties (4 concurrent fetches)
    2. Overlap      — mutual = intersection, overlap % = |mutual| / |union|
    3. Adamic-Adar  — each mutual weighted 1/ln(degree): rare friends count more
    4. Quality      — weight x average account quality (spam/bot resistance)
    5. Distance     — base band (≤60) + overlap bonus (≤30) + follow bonus (≤10)
    6. Tiers        — risk tier and quality tier, total over their inputs

Scores are conservative on failure: an unknown or unreachable party is
HIGH risk, never silently LOW.
"""
import asyncio
import math
from typing import Dict, Iterable, Optional, Sequence

import structlog

from lendtrust.compute.cache import proximity_key, with_cache
from lendtrust.compute.fanout import gather_with_fallback
from lendtrust.config import ScoringConfig
from lendtrust.trust.models import ProximityScore, QualityTier, RiskTier, round_half_up

logger = structlog.get_logger()


# ── Pure scoring functions ────────────────────────

def adamic_adar(degrees: Iterable[int]) -> float:
    """Σ 1/ln(degree); a mutual with 0-1 connections counts the maximum 1.0."""
    total = 0.0
    for degree in degrees:
        if degree > 1:
            total += 1.0 / math.log(degree)
        else:
            total += 1.0
    return total


def average_quality(
    borrower_quality: Optional[float],
    viewer_quality: Optional[float],
    default: float = 0.7,
) -> float:
    if borrower_quality is None or viewer_quality is None:
        return default
    return (borrower_quality + viewer_quality) / 2


def base_distance(weight: float, config: ScoringConfig) -> int:
    for threshold, points in config.distance_bands:
        if weight >= threshold:
            return points
    return 0


def overlap_bonus(overlap_percent: float, config: ScoringConfig) -> float:
    if overlap_percent > config.overlap_floor:
        return min(overlap_percent * config.overlap_multiplier, config.overlap_bonus_cap)
    return 0.0


def follow_bonus(viewer_follows_borrower: bool, borrower_follows_viewer: bool, config: ScoringConfig) -> int:
    if viewer_follows_borrower and borrower_follows_viewer:
        return config.mutual_follow_bonus
    if viewer_follows_borrower or borrower_follows_viewer:
        return config.one_way_follow_bonus
    return 0


def social_distance(
    weight: float,
    overlap_percent: float,
    viewer_follows_borrower: bool,
    borrower_follows_viewer: bool,
    config: ScoringConfig,
) -> int:
    raw = (
        base_distance(weight, config)
        + overlap_bonus(overlap_percent, config)
        + follow_bonus(viewer_follows_borrower, borrower_follows_viewer, config)
    )
    return int(min(max(raw, 0), 100))


def risk_tier(weight: float, distance: int, config: ScoringConfig) -> RiskTier:
    if weight >= config.low_risk_weight or distance >= config.low_risk_distance:
        return RiskTier.LOW
    if weight >= config.medium_risk_weight or distance >= config.medium_risk_distance:
        return RiskTier.MEDIUM
    return RiskTier.HIGH


def quality_tier(avg_quality: float, config: ScoringConfig) -> QualityTier:
    if avg_quality >= config.high_quality:
        return QualityTier.HIGH
    if avg_quality >= config.medium_quality:
        return QualityTier.MEDIUM
    return QualityTier.LOW


def describe_risk(score: ProximityScore) -> str:
    """Human-readable summary of a proximity score."""
    n = score.mutual_count
    if score.risk_tier == RiskTier.LOW:
        return f"{n} mutual connections - Highly trusted in your network"
    if score.risk_tier == RiskTier.MEDIUM:
        return f"{n} mutual connections - Some shared network"
    if n > 0:
        return f"{n} mutual connections - Limited shared network"
    return "No mutual connections - New to your network"


# ── Engine ────────────────────────────────────────

class ProximityEngine:
    """
    Usage:
        engine = ProximityEngine(graph, cache, ScoringConfig())
        score = await engine.compute(borrower_fid, lender_fid, 0.9, 0.8)
    """

    def __init__(self, graph, cache, config: ScoringConfig):
        self._graph = graph
        self._cache = cache
        self._config = config
        self._degree_limit: Optional[asyncio.Semaphore] = None
        self._limit_loop = None

    def _degree_slots(self) -> asyncio.Semaphore:
        """One degree-fetch limit shared by every compute on the running loop."""
        loop = asyncio.get_running_loop()
        if self._limit_loop is not loop:
            self._degree_limit = asyncio.Semaphore(self._config.degree_concurrency)
            self._limit_loop = loop
        return self._degree_limit

    async def compute(
        self,
        borrower_id: Optional[int],
        viewer_id: Optional[int],
        borrower_quality: Optional[float] = None,
        viewer_quality: Optional[float] = None,
    ) -> ProximityScore:
        """Never raises: missing parties and failures yield the no-connection score."""
        if borrower_id is None or viewer_id is None:
            return ProximityScore.no_connection()

        key = proximity_key(borrower_id, viewer_id, borrower_quality, viewer_quality)
        try:
            return await with_cache(
                self._cache, key, self._config.profile_ttl,
                lambda: self._compute(borrower_id, viewer_id, borrower_quality, viewer_quality),
            )
        except Exception as e:
            logger.error("proximity_failed", borrower=borrower_id, viewer=viewer_id, error=str(e))
            return ProximityScore.no_connection()

    async def compute_batch(
        self,
        borrower_id: int,
        viewer_ids: Sequence[int],
        borrower_quality: Optional[float] = None,
    ) -> Dict[int, ProximityScore]:
        """Proximity of many viewers to one borrower, computed concurrently."""
        scores = await asyncio.gather(*[
            self.compute(borrower_id, viewer_id, borrower_quality) for viewer_id in viewer_ids
        ])
        return dict(zip(viewer_ids, scores))

    async def _weighted_mutuals(self, mutuals: frozenset) -> float:
        if not mutuals:
            return 0.0
        degrees = await gather_with_fallback(
            [self._graph.degree(fid) for fid in mutuals],
            fallback=self._config.default_degree,
            timeout=self._config.fetch_timeout,
            limit=self._degree_slots(),
            name="mutual_degree",
        )
        return adamic_adar(degrees)

    async def _compute(
        self,
        borrower_id: int,
        viewer_id: int,
        borrower_quality: Optional[float],
        viewer_quality: Optional[float],
    ) -> ProximityScore:
        config = self._config
        borrower, viewer = await asyncio.gather(
            self._graph.network(borrower_id),
            self._graph.network(viewer_id),
        )

        borrower_net = borrower.combined
        viewer_net = viewer.combined
        mutuals = borrower_net & viewer_net
        union = borrower_net | viewer_net
        overlap = len(mutuals) / len(union) * 100 if union else 0.0

        avg_q = average_quality(borrower_quality, viewer_quality, config.default_quality)
        weight = await self._weighted_mutuals(mutuals) * avg_q

        distance = social_distance(
            weight,
            overlap,
            viewer_follows_borrower=borrower_id in viewer.following,
            borrower_follows_viewer=viewer_id in borrower.following,
            config=config,
        )
        tier = risk_tier(weight, distance, config)

        logger.debug(
            "proximity_computed",
            borrower=borrower_id, viewer=viewer_id,
            mutuals=len(mutuals), weight=round(weight, 2), distance=distance, tier=tier.value,
        )

        return ProximityScore(
            mutual_count=len(mutuals),
            effective_mutual_weight=round_half_up(weight, 1),
            social_distance=distance,
            risk_tier=tier,
            overlap_percent=overlap,
            quality_tier=quality_tier(avg_q, config),
            avg_quality=avg_q,
            borrower_followers=len(borrower.followers),
            viewer_followers=len(viewer.followers),
        )
