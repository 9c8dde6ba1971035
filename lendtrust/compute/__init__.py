"""
LendTrust — Data Layer
External providers, caching and fan-out. No scoring logic.
"""
