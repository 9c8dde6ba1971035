"""
LendTrust — Wallet Activity Analyzer

Score breakdown (0-100):
    Account age     (0-30)  <7d: 0, <30d: 10, <90d: 20, else 30
    Activity level  (0-30)  0 txs: 0, ≤5: 10, ≤20: 20, else 30
    Recent activity (0-20)  active in last 30 days
    Balance         (0-20)  any non-zero balance

With an explorer key the real first-transaction date and recent history
are used. Without one the nonce stands in for both.

Scores are cached per address for the profile TTL when a cache is given.
An unreadable wallet scores zero and is not cached.
"""
import time
from typing import Any, Callable, Dict, List

import structlog

from lendtrust.compute.cache import wallet_key, with_cache
from lendtrust.compute.fanout import gather_with_fallback
from lendtrust.trust.models import ActivityBreakdown, ActivityMetrics, ActivityScore

logger = structlog.get_logger()

_DAY = 86400
RECENT_WINDOW_DAYS = 30


def age_points(days: int) -> int:
    if days < 7:
        return 0
    if days < 30:
        return 10
    if days < 90:
        return 20
    return 30


def activity_points(tx_count: int) -> int:
    if tx_count <= 0:
        return 0
    if tx_count <= 5:
        return 10
    if tx_count <= 20:
        return 20
    return 30


def score_activity(metrics: ActivityMetrics, source: str) -> ActivityScore:
    breakdown = ActivityBreakdown(
        age=age_points(metrics.account_age_days),
        activity=activity_points(metrics.transaction_count),
        recent=20 if metrics.recent_activity else 0,
        balance=20 if metrics.balance_wei > 0 else 0,
    )
    total = breakdown.age + breakdown.activity + breakdown.recent + breakdown.balance
    return ActivityScore(score=min(total, 100), metrics=metrics, breakdown=breakdown, source=source)


def metrics_from_history(txs: List[Dict[str, Any]], balance_wei: int, now: float) -> ActivityMetrics:
    timestamps = []
    for tx in txs:
        try:
            timestamps.append(int(tx.get("timeStamp", 0)))
        except (TypeError, ValueError):
            continue
    timestamps = [t for t in timestamps if t > 0]

    age_days = int((now - min(timestamps)) // _DAY) if timestamps else 0
    cutoff = now - RECENT_WINDOW_DAYS * _DAY
    return ActivityMetrics(
        account_age_days=max(age_days, 0),
        transaction_count=len(txs),
        recent_activity=any(t > cutoff for t in timestamps),
        balance_wei=balance_wei,
        has_transactions=len(txs) > 0,
    )


def metrics_from_nonce(tx_count: int, balance_wei: int) -> ActivityMetrics:
    """Nonce-only heuristic: ~3 days of age per transaction, capped at a year."""
    has_txs = tx_count > 0
    return ActivityMetrics(
        account_age_days=min(tx_count * 3, 365),
        transaction_count=tx_count,
        recent_activity=has_txs and balance_wei > 0,
        balance_wei=balance_wei,
        has_transactions=has_txs,
    )


class WalletActivityAnalyzer:
    def __init__(
        self,
        chain,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
        cache=None,
        ttl: int = 300,
    ):
        self._chain = chain
        self._timeout = timeout
        self._clock = clock
        self._cache = cache
        self._ttl = ttl

    async def analyze(self, address: str) -> ActivityScore:
        """Never raises; an unreadable wallet scores zero."""
        try:
            if self._cache is None:
                return await self._analyze(address)
            return await with_cache(self._cache, wallet_key(address), self._ttl, lambda: self._analyze(address))
        except Exception as e:
            logger.warning("wallet_analysis_failed", address=address, error=str(e))
            return ActivityScore()

    async def _analyze(self, address: str) -> ActivityScore:
        if self._chain.explorer_enabled:
            try:
                return await self._analyze_with_explorer(address)
            except Exception as e:
                logger.debug("wallet_explorer_failed", address=address, error=str(e))
        return await self._analyze_with_rpc(address)

    async def _analyze_with_explorer(self, address: str) -> ActivityScore:
        txs, balance = await gather_with_fallback(
            [self._chain.get_transactions(address), self._chain.get_balance(address)],
            fallback=None,
            timeout=self._timeout,
            name="wallet_explorer",
        )
        if txs is None:
            raise RuntimeError("transaction history unavailable")
        metrics = metrics_from_history(txs, balance or 0, self._clock())
        return score_activity(metrics, source="explorer")

    async def _analyze_with_rpc(self, address: str) -> ActivityScore:
        balance, tx_count = await gather_with_fallback(
            [self._chain.get_balance(address), self._chain.get_transaction_count(address)],
            fallback=None,
            timeout=self._timeout,
            name="wallet_rpc",
        )
        if balance is None and tx_count is None:
            raise RuntimeError("rpc unavailable")
        metrics = metrics_from_nonce(tx_count or 0, balance or 0)
        return score_activity(metrics, source="rpc")
