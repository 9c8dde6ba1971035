"""
LendTrust — API Package
Re-exports for convenience.
"""
from lendtrust.api.scoring import router
