"""
LendTrust — Configuration
Social-proximity trust scoring for peer-to-peer lending.

All settings load from environment variables with safe defaults for development.
In production, set LENDTRUST_ENV=production to enforce required values.

Two layers:
    Settings       — process environment (API keys, endpoints, cache backend)
    ScoringConfig  — calibration constants handed to every scoring engine
"""
import os
import warnings
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

load_dotenv()


class Settings:
    def __init__(self):
        self.ENVIRONMENT = os.getenv("LENDTRUST_ENV", "development")

        # === Social graph (Neynar / Farcaster) ===
        self.NEYNAR_API_KEY = os.getenv("NEYNAR_API_KEY", "")
        self.NEYNAR_API_BASE = os.getenv("NEYNAR_API_BASE", "https://api.neynar.com/v2")
        self.GRAPH_PAGE_LIMIT = int(os.getenv("GRAPH_PAGE_LIMIT", "150"))

        # === On-chain (Base) ===
        self.BASE_RPC_URL = os.getenv("BASE_RPC_URL", "https://mainnet.base.org")
        self.BASESCAN_API_KEY = os.getenv("BASESCAN_API_KEY", "")
        self.BASESCAN_API_URL = os.getenv("BASESCAN_API_URL", "https://api.basescan.org/api")

        # === Cache ===
        self.CACHE_BACKEND = os.getenv("CACHE_BACKEND", "memory")
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "5000"))
        self.CACHE_TTL_PROFILE = int(os.getenv("CACHE_TTL_PROFILE", "300"))      # 5 min
        self.CACHE_TTL_SUPPORT = int(os.getenv("CACHE_TTL_SUPPORT", "1800"))     # 30 min

        # === External calls ===
        self.FETCH_TIMEOUT = float(os.getenv("FETCH_TIMEOUT", "10.0"))
        self.DEGREE_CONCURRENCY = int(os.getenv("DEGREE_CONCURRENCY", "16"))

        # === Application ===
        self.HOST = os.getenv("LENDTRUST_HOST", "0.0.0.0")
        self.PORT = int(os.getenv("LENDTRUST_PORT", "8000"))

        if not self.NEYNAR_API_KEY:
            if self.is_production:
                raise RuntimeError("NEYNAR_API_KEY must be set in production. Add it to .env")
            warnings.warn("NEYNAR_API_KEY not set — social scoring will see no profiles.")

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def graph_enabled(self) -> bool:
        return bool(self.NEYNAR_API_KEY) and self.NEYNAR_API_KEY != "your_neynar_api_key_here"

    @property
    def explorer_enabled(self) -> bool:
        return bool(self.BASESCAN_API_KEY)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# === Scoring calibration ===

# (threshold on effective mutual weight, base points), highest first
DISTANCE_BANDS: Tuple[Tuple[float, int], ...] = (
    (20.0, 60),
    (10.0, 50),
    (5.0, 35),
    (2.5, 20),
    (1.0, 10),
)


@dataclass(frozen=True)
class ScoringConfig:
    """
    Calibration constants for the proximity, support and reputation engines.

    The connected-lender threshold and the risk-tier weights are hand-tuned
    and should be revisited against repayment outcomes.
    """
    default_quality: float = 0.7
    default_degree: int = 100

    distance_bands: Tuple[Tuple[float, int], ...] = DISTANCE_BANDS
    overlap_floor: float = 10.0
    overlap_multiplier: float = 3.0
    overlap_bonus_cap: float = 30.0
    mutual_follow_bonus: int = 10
    one_way_follow_bonus: int = 5

    low_risk_weight: float = 9.0
    low_risk_distance: int = 60
    medium_risk_weight: float = 2.5
    medium_risk_distance: int = 30

    high_quality: float = 0.7
    medium_quality: float = 0.4

    connected_threshold: int = 5
    strong_support_pct: int = 60
    moderate_support_pct: int = 30

    fetch_timeout: float = 10.0
    degree_concurrency: int = 16
    profile_ttl: int = 300
    support_ttl: int = 1800

    @classmethod
    def from_settings(cls, settings: Settings) -> "ScoringConfig":
        return cls(
            fetch_timeout=settings.FETCH_TIMEOUT,
            degree_concurrency=settings.DEGREE_CONCURRENCY,
            profile_ttl=settings.CACHE_TTL_PROFILE,
            support_ttl=settings.CACHE_TTL_SUPPORT,
        )
