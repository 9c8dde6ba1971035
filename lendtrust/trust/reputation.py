"""
LendTrust — Composite Reputation Aggregator

Two independently scaled signals folded into fixed point budgets so no
single one dominates:

    Social profile  (max 60)  — power badge 24, followers 18, account age 12, engagement 6
    Wallet activity (max 40)  — age 12, activity 12, recency 8, balance 8
    ─────────────────────────
    Total possible:   100

The social budget is the native 0-100 profile score scaled by 0.6, the
wallet budget is the activity breakdown scaled by 0.4. A wallet with no
social profile keeps a zero social budget: missing social signal is itself
a risk signal, so the wallet points are not re-weighted to fill the gap.
"""
import asyncio
from typing import Optional

import structlog

from lendtrust.trust.models import (
    AccountAgeTier,
    ActivityScore,
    FollowerTier,
    Identity,
    ReputationScore,
    SocialReputation,
    round_half_up,
)

logger = structlog.get_logger()

SOCIAL_WEIGHT = 0.6
WALLET_WEIGHT = 0.4


def follower_tier(count: int) -> FollowerTier:
    if count >= 10000:
        return FollowerTier.WHALE
    if count >= 1000:
        return FollowerTier.INFLUENTIAL
    if count >= 100:
        return FollowerTier.ACTIVE
    if count >= 10:
        return FollowerTier.GROWING
    return FollowerTier.NEW


def account_age_tier(days: int) -> AccountAgeTier:
    if days >= 730:
        return AccountAgeTier.VETERAN
    if days >= 365:
        return AccountAgeTier.ESTABLISHED
    if days >= 90:
        return AccountAgeTier.GROWING
    return AccountAgeTier.NEW


def engagement_points(follower_count: int, following_count: int) -> float:
    """Healthy following/follower ratio: 10 inside [0.1, 2.0], 5 inside [0.05, 5.0]."""
    if follower_count <= 0:
        return 0.0
    ratio = following_count / follower_count
    if 0.1 <= ratio <= 2.0:
        return 10.0
    if 0.05 <= ratio <= 5.0:
        return 5.0
    return 0.0


def score_social_profile(identity: Identity) -> SocialReputation:
    """Native 0-100 profile score."""
    badge = 40.0 if identity.power_badge else 0.0
    followers = min(identity.follower_count / 1000 * 10, 30.0)
    age = min(identity.account_age_days / 365 * 20, 20.0)
    engagement = engagement_points(identity.follower_count, identity.following_count)

    total = badge + followers + age + engagement
    rank = min(identity.follower_count / 100 + (50 if identity.power_badge else 0), 100)

    return SocialReputation(
        overall=round_half_up(min(total, 100)),
        power_badge=badge,
        followers=followers,
        account_age=age,
        engagement=engagement,
        follower_tier=follower_tier(identity.follower_count),
        account_age_tier=account_age_tier(identity.account_age_days),
        social_rank=round_half_up(rank),
    )


def compose_reputation(identity: Optional[Identity], activity: Optional[ActivityScore]) -> ReputationScore:
    """Fold a (possibly absent) profile and a (possibly absent) wallet score into 0-100."""
    parts = {
        "power_badge": 0.0,
        "followers": 0.0,
        "account_age": 0.0,
        "engagement": 0.0,
        "wallet_age": 0.0,
        "wallet_activity": 0.0,
        "recent_activity": 0.0,
        "balance": 0.0,
    }

    if identity is not None:
        social = score_social_profile(identity)
        parts["power_badge"] = social.power_badge * SOCIAL_WEIGHT
        parts["followers"] = social.followers * SOCIAL_WEIGHT
        parts["account_age"] = social.account_age * SOCIAL_WEIGHT
        parts["engagement"] = social.engagement * SOCIAL_WEIGHT

    if activity is not None:
        parts["wallet_age"] = activity.breakdown.age * WALLET_WEIGHT
        parts["wallet_activity"] = activity.breakdown.activity * WALLET_WEIGHT
        parts["recent_activity"] = activity.breakdown.recent * WALLET_WEIGHT
        parts["balance"] = activity.breakdown.balance * WALLET_WEIGHT

    social_total = min(sum(parts[k] for k in ("power_badge", "followers", "account_age", "engagement")), 60.0)
    wallet_total = min(sum(parts[k] for k in ("wallet_age", "wallet_activity", "recent_activity", "balance")), 40.0)
    overall = min(max(round_half_up(social_total + wallet_total), 0), 100)

    return ReputationScore(
        overall=overall,
        social_component=round_half_up(social_total),
        wallet_component=round_half_up(wallet_total),
        breakdown={k: round_half_up(v) for k, v in parts.items()},
        badges={
            "has_power_badge": bool(identity and identity.power_badge),
            "has_social_profile": identity is not None,
        },
    )


class ReputationAggregator:
    def __init__(self, resolver, wallet_analyzer):
        self._resolver = resolver
        self._wallet = wallet_analyzer

    async def compute(self, address: Optional[str]) -> Optional[ReputationScore]:
        """None only when no address was supplied."""
        if not address or not address.strip():
            return None
        identity, activity = await asyncio.gather(
            self._resolve(address),
            self._wallet.analyze(address),
        )
        score = compose_reputation(identity, activity)
        logger.debug("reputation_computed", address=address, overall=score.overall,
                     social=score.social_component, wallet=score.wallet_component)
        return score

    async def _resolve(self, address: str) -> Optional[Identity]:
        try:
            return await self._resolver.resolve(address)
        except Exception as e:
            logger.warning("reputation_identity_failed", address=address, error=str(e))
            return None
