"""
LendTrust — social-proximity and reputation scoring for peer-to-peer lending.
"""
__version__ = "1.0.0"
