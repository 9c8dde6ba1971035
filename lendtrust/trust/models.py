"""
LendTrust — Scoring Data Model

Value objects produced by the scoring engines. Nothing here is persisted;
every object lives at most as long as the cache entry that holds it.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Dict, Any, List, Tuple
from enum import Enum


# ── Enums ─────────────────────────────────────────

class RiskTier(str, Enum):
    LOW    = "LOW"
    MEDIUM = "MEDIUM"
    HIGH   = "HIGH"


class QualityTier(str, Enum):
    HIGH   = "HIGH"
    MEDIUM = "MEDIUM"
    LOW    = "LOW"


class SupportTier(str, Enum):
    STRONG   = "STRONG"
    MODERATE = "MODERATE"
    WEAK     = "WEAK"
    NONE     = "NONE"


class FollowerTier(str, Enum):
    WHALE       = "whale"
    INFLUENTIAL = "influential"
    ACTIVE      = "active"
    GROWING     = "growing"
    NEW         = "new"


class AccountAgeTier(str, Enum):
    VETERAN     = "veteran"
    ESTABLISHED = "established"
    GROWING     = "growing"
    NEW         = "new"


# ── Rounding ──────────────────────────────────────

def round_half_up(value: float, digits: int = 0):
    """
    Display rounding with halves going up: 12.5 -> 13, 0.25 -> 0.3.
    Built-in round() sends halves to the even neighbour (12.5 -> 12).
    Returns an int when digits == 0.
    """
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if digits == 0 else float(rounded)


# ── Identity ──────────────────────────────────────

@dataclass(frozen=True)
class Identity:
    """
    A social identity as resolved from the graph provider.
    Read-only; follower/following sets are fetched on demand by fid.
    """
    fid: int
    username: str = ""
    display_name: str = ""
    quality_score: Optional[float] = None     # 0-1, spam/bot resistance
    verified_wallets: Tuple[str, ...] = ()
    follower_count: int = 0
    following_count: int = 0
    power_badge: bool = False
    account_age_days: int = 0


@dataclass(frozen=True)
class Network:
    """One identity's followers and following, as fid sets."""
    followers: frozenset = frozenset()
    following: frozenset = frozenset()

    @property
    def combined(self) -> frozenset:
        return self.followers | self.following

    @property
    def degree(self) -> int:
        return len(self.followers) + len(self.following)


# ── Pairwise proximity ────────────────────────────

@dataclass
class ProximityScore:
    mutual_count: int
    effective_mutual_weight: float          # Adamic-Adar x quality
    social_distance: int                    # 0-100, higher = closer
    risk_tier: RiskTier
    overlap_percent: float
    quality_tier: Optional[QualityTier] = None
    avg_quality: Optional[float] = None
    borrower_followers: int = 0
    viewer_followers: int = 0

    @classmethod
    def no_connection(cls) -> "ProximityScore":
        """Conservative result for unknown parties or failed computations."""
        return cls(
            mutual_count=0,
            effective_mutual_weight=0.0,
            social_distance=0,
            risk_tier=RiskTier.HIGH,
            overlap_percent=0.0,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mutual_count": self.mutual_count,
            "effective_mutual_weight": self.effective_mutual_weight,
            "social_distance": self.social_distance,
            "risk_tier": self.risk_tier.value,
            "overlap_percent": round_half_up(self.overlap_percent, 2),
            "quality_tier": self.quality_tier.value if self.quality_tier else None,
            "avg_quality": self.avg_quality,
            "borrower_followers": self.borrower_followers,
            "viewer_followers": self.viewer_followers,
        }


# ── Wallet activity ───────────────────────────────

@dataclass
class ActivityBreakdown:
    age: int = 0            # 0-30
    activity: int = 0       # 0-30
    recent: int = 0         # 0-20
    balance: int = 0        # 0-20


@dataclass
class ActivityMetrics:
    account_age_days: int = 0
    transaction_count: int = 0
    recent_activity: bool = False
    balance_wei: int = 0
    has_transactions: bool = False


@dataclass
class ActivityScore:
    score: int = 0          # 0-100
    metrics: ActivityMetrics = field(default_factory=ActivityMetrics)
    breakdown: ActivityBreakdown = field(default_factory=ActivityBreakdown)
    source: str = "none"    # "explorer", "rpc", "none"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["metrics"]["balance_wei"] = str(self.metrics.balance_wei)
        return data


# ── Reputation ────────────────────────────────────

@dataclass
class SocialReputation:
    """Native 0-100 profile score; the composite rescales it to 60 points."""
    overall: int
    power_badge: float
    followers: float
    account_age: float
    engagement: float
    follower_tier: FollowerTier
    account_age_tier: AccountAgeTier
    social_rank: int


@dataclass
class ReputationScore:
    overall: int                            # 0-100
    social_component: int                   # 0-60
    wallet_component: int                   # 0-40
    breakdown: Dict[str, int] = field(default_factory=dict)
    badges: Dict[str, bool] = field(default_factory=dict)

    @classmethod
    def zeroed(cls) -> "ReputationScore":
        return cls(
            overall=0,
            social_component=0,
            wallet_component=0,
            breakdown={k: 0 for k in REPUTATION_FACTORS},
            badges={"has_power_badge": False, "has_social_profile": False},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


REPUTATION_FACTORS = (
    "power_badge",
    "followers",
    "account_age",
    "engagement",
    "wallet_age",
    "wallet_activity",
    "recent_activity",
    "balance",
)


# ── Loan-level support ────────────────────────────

@dataclass
class LenderDetail:
    address: str
    mutual_connections: int
    is_connected: bool
    fid: Optional[int] = None


@dataclass
class LoanSocialSupport:
    total_lenders: int
    connected_lender_count: int
    average_mutual_connections: float
    percent_connected: int
    support_tier: SupportTier
    lender_details: Optional[List[LenderDetail]] = None

    @classmethod
    def empty(cls, total_lenders: int = 0) -> "LoanSocialSupport":
        return cls(
            total_lenders=total_lenders,
            connected_lender_count=0,
            average_mutual_connections=0.0,
            percent_connected=0,
            support_tier=SupportTier.NONE,
            lender_details=[] if total_lenders == 0 else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["support_tier"] = self.support_tier.value
        return data
