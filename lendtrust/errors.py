"""LendTrust exception hierarchy."""


class LendTrustError(Exception):
    """Base class for errors raised by the scoring engine's data layer."""


class GraphProviderError(LendTrustError):
    """The social graph provider returned an error or an unreadable payload."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class ChainProviderError(LendTrustError):
    """The RPC node or block explorer returned an error."""


class CircuitOpenError(LendTrustError):
    """A provider has failed repeatedly and calls are being skipped."""

    def __init__(self, name: str):
        super().__init__(f"circuit open for {name}")
        self.name = name
