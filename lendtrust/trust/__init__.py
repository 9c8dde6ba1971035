"""
LendTrust — Scoring Layer
Re-exports for convenience.
"""
from lendtrust.trust.models import (
    Identity,
    ProximityScore,
    ReputationScore,
    LoanSocialSupport,
    ActivityScore,
    RiskTier,
    QualityTier,
    SupportTier,
)
