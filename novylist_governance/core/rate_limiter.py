"""
Per-user daily request limits.

Counts AI requests per user in a 24-hour window that opens on the user's
first request, using the store's point-consumption primitive.
"""

import logging
import time
from dataclasses import asdict, dataclass, replace
from typing import Optional

from novylist_governance.config.loader import DEFAULT_CONFIG, GovernanceConfig
from novylist_governance.storage.store import UsageStore

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class RateLimitStatus:
    """Rate limit state for one user."""
    is_rate_limited: bool
    limit: int
    remaining: int
    reset: int  # Unix timestamp in seconds
    tier_name: str

    def to_dict(self) -> dict:
        return asdict(self)


class RateLimiter:
    """Daily request limiter keyed by ``ratelimit:{tier}:{user}``.

    Checks never consume; a point is consumed only after the upstream call
    has succeeded. Store failures fail open.
    """

    def __init__(self, store: UsageStore, config: GovernanceConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config

    def _key(self, user_id: str, tier: str) -> str:
        return f"ratelimit:{tier}:{user_id}"

    def _status(self, tier: str, consumed: int, ms_before_reset: int, now: float) -> RateLimitStatus:
        limit = self.config.get_tier(tier).requests_per_day
        remaining = max(0, limit - consumed)
        return RateLimitStatus(
            is_rate_limited=remaining <= 0 and not self.config.is_exempt(tier),
            limit=limit,
            remaining=remaining,
            reset=int((now * 1000 + ms_before_reset) // 1000),
            tier_name=tier,
        )

    def _fail_open(self, tier: str, now: float) -> RateLimitStatus:
        limit = self.config.get_tier(tier).requests_per_day
        logger.warning("Rate limit state unavailable for tier %s; failing open", tier)
        return RateLimitStatus(
            is_rate_limited=False,
            limit=limit,
            remaining=limit,
            reset=int(now + WINDOW_SECONDS),
            tier_name=tier,
        )

    def check_rate_limit(self, user_id: str, tier: str, now: Optional[float] = None) -> RateLimitStatus:
        """Report whether the user has exhausted today's requests.

        Args:
            user_id: User identifier
            tier: Subscription tier
            now: Current epoch seconds (for deterministic testing)

        Returns:
            RateLimitStatus; permissive if the store cannot be read
        """
        now = time.time() if now is None else now
        tier = self.config.normalize_tier(tier)

        result = self.store.read_point_counter(self._key(user_id, tier))
        if not result.ok:
            return self._fail_open(tier, now)

        consumed, ms_before_reset = result.value
        return self._status(tier, consumed, ms_before_reset, now)

    def consume_rate_limit(
        self,
        user_id: str,
        tier: str,
        now: Optional[float] = None,
        fallback: Optional[RateLimitStatus] = None
    ) -> RateLimitStatus:
        """Consume one request point and return the updated status.

        Args:
            user_id: User identifier
            tier: Subscription tier
            now: Current epoch seconds (for deterministic testing)
            fallback: Status from the preceding check; if the store cannot be
                written, the point is deducted from it instead

        Returns:
            RateLimitStatus after consumption
        """
        now = time.time() if now is None else now
        tier = self.config.normalize_tier(tier)

        result = self.store.consume_point(self._key(user_id, tier), WINDOW_SECONDS)
        if not result.ok:
            if fallback is not None:
                logger.warning("Rate limit point for tier %s not recorded; deducting from last check", tier)
                return replace(fallback, remaining=max(0, fallback.remaining - 1))
            return self._fail_open(tier, now)

        consumed, ms_before_reset = result.value
        return self._status(tier, consumed, ms_before_reset, now)

    def reset_user_rate_limit(self, user_id: str, tier: str) -> bool:
        """Clear a user's window (admin)."""
        tier = self.config.normalize_tier(tier)
        return self.store.delete(self._key(user_id, tier)).ok
