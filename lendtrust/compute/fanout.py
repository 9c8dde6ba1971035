"""
LendTrust — Fan-out Combinators

Every multi-party computation issues its sub-fetches concurrently and joins
on all of them. One failed or slow sub-fetch never cancels its siblings:
it is replaced by a fallback value chosen by the caller.

    results = await gather_with_fallback(
        [graph.degree(fid) for fid in mutuals],
        fallback=100,
        timeout=10.0,
        limit=asyncio.Semaphore(16),
    )
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from lendtrust.errors import CircuitOpenError

logger = structlog.get_logger()


async def settle(
    coro: Awaitable[Any],
    timeout: float,
    limit: Optional[asyncio.Semaphore] = None,
    name: str = "",
) -> Tuple[Any, bool]:
    """Run one sub-fetch. Returns (result, True) or (exception, False)."""
    try:
        if limit is None:
            return await asyncio.wait_for(coro, timeout=timeout), True
        async with limit:
            return await asyncio.wait_for(coro, timeout=timeout), True
    except Exception as e:
        logger.debug("subfetch_failed", name=name, error=str(e) or type(e).__name__)
        return e, False


async def gather_with_fallback(
    coros: Iterable[Awaitable[Any]],
    fallback: Any,
    timeout: float,
    limit: Optional[asyncio.Semaphore] = None,
    name: str = "",
) -> List[Any]:
    """
    Run coroutines concurrently; failed items become `fallback`.
    `fallback` may be a zero-argument callable for mutable defaults.
    """
    settled = await asyncio.gather(*[settle(c, timeout, limit, name) for c in coros])
    results = []
    for value, ok in settled:
        if ok:
            results.append(value)
        else:
            results.append(fallback() if callable(fallback) else fallback)
    return results


# =============================================
# CIRCUIT BREAKER
# =============================================

class CircuitBreaker:
    """
    Guards one provider (NeynarProvider holds one by default).

    Consecutive failures up to `threshold` open the breaker; while open,
    `call()` raises CircuitOpenError at once, which the fan-out treats like
    any other failed sub-fetch. After `recovery_timeout` seconds one trial
    call is let through: success closes the breaker, failure re-opens it.
    """
    def __init__(
        self,
        name: str,
        threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.threshold = threshold
        self.recovery_timeout = recovery_timeout
        self.failures = 0
        self.last_failure_time = 0.0
        self.state = "closed"  # closed = healthy, open = failing, half-open = testing
        self._clock = clock

    def can_execute(self) -> bool:
        if self.state == "closed":
            return True
        if self.state == "open":
            if self._clock() - self.last_failure_time > self.recovery_timeout:
                self.state = "half-open"
                return True
            return False
        return True

    def record_success(self):
        self.failures = 0
        self.state = "closed"

    def record_failure(self):
        self.failures += 1
        self.last_failure_time = self._clock()
        if self.failures >= self.threshold:
            if self.state != "open":
                logger.warning("circuit_breaker_opened", provider=self.name, failures=self.failures)
            self.state = "open"

    async def call(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Invoke `fn` through the breaker; raises CircuitOpenError while open."""
        if not self.can_execute():
            raise CircuitOpenError(self.name)
        try:
            result = await fn(*args, **kwargs)
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state,
            "failures": self.failures,
            "threshold": self.threshold,
        }
