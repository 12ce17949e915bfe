"""
Monthly token budgets.

Tracks tokens consumed per user, per feature and in total, and decides
whether a request's estimated tokens fit what is left.

Each feature gets a fixed slice of the tier's monthly budget. Feature and
total usage are enforced independently. The "month" here is a rolling
30-day TTL refreshed on every write, which is not the calendar month the
cost tracker buckets by.
"""

import logging
from dataclasses import asdict, dataclass

from novylist_governance.config.loader import DEFAULT_CONFIG, GovernanceConfig
from novylist_governance.storage.store import UsageStore, parse_int, values_or_empty

logger = logging.getLogger(__name__)

MONTHLY_TTL_SECONDS = 30 * 24 * 60 * 60
TOTAL_KEY = "total"


@dataclass(frozen=True)
class TokenBudgetStatus:
    """Result of an admission check against the token budget."""
    has_sufficient_budget: bool
    total_budget: int
    total_remaining: float
    feature_budget: float
    feature_remaining: float
    estimated_tokens: int
    feature_type: str
    tier_name: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class TokenUsageSnapshot:
    """Budget state after recording usage."""
    total_budget: int
    total_remaining: float
    total_used: int
    feature_budget: float
    feature_remaining: float
    feature_used: int
    tier_name: str

    def to_dict(self) -> dict:
        return asdict(self)


class TokenBudgetTracker:
    """Token counters keyed by ``tokenbudget:{tier}:{user}:{feature|total}``."""

    def __init__(self, store: UsageStore, config: GovernanceConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config

    def _key(self, tier: str, user_id: str, scope: str) -> str:
        return f"tokenbudget:{tier}:{user_id}:{scope}"

    def _budgets(self, tier: str, feature_type: str):
        total_budget = self.config.get_tier(tier).monthly_token_budget
        feature_budget = total_budget * self.config.feature_fraction(feature_type)
        return total_budget, feature_budget

    def check_token_budget(
        self,
        user_id: str,
        tier: str,
        feature_type: str,
        estimated_tokens: int
    ) -> TokenBudgetStatus:
        """Check whether ``estimated_tokens`` fits both the feature slice and the total.

        Args:
            user_id: User identifier
            tier: Subscription tier
            feature_type: Feature the request is for
            estimated_tokens: Estimated prompt + completion tokens

        Returns:
            TokenBudgetStatus; permissive if the store cannot be read
        """
        tier = self.config.normalize_tier(tier)
        total_budget, feature_budget = self._budgets(tier, feature_type)

        result = self.store.get_many([
            self._key(tier, user_id, feature_type),
            self._key(tier, user_id, TOTAL_KEY),
        ])
        if not result.ok:
            logger.warning("Token budget unavailable for %s/%s; failing open", tier, feature_type)
            return TokenBudgetStatus(
                has_sufficient_budget=True,
                total_budget=total_budget,
                total_remaining=total_budget,
                feature_budget=feature_budget,
                feature_remaining=feature_budget,
                estimated_tokens=estimated_tokens,
                feature_type=feature_type,
                tier_name=tier,
            )

        feature_raw, total_raw = values_or_empty(result, 2)
        feature_remaining = max(0, feature_budget - parse_int(feature_raw))
        total_remaining = max(0, total_budget - parse_int(total_raw))

        has_sufficient_budget = self.config.is_exempt(tier) or (
            estimated_tokens <= feature_remaining and estimated_tokens <= total_remaining
        )

        return TokenBudgetStatus(
            has_sufficient_budget=has_sufficient_budget,
            total_budget=total_budget,
            total_remaining=total_remaining,
            feature_budget=feature_budget,
            feature_remaining=feature_remaining,
            estimated_tokens=estimated_tokens,
            feature_type=feature_type,
            tier_name=tier,
        )

    def record_token_usage(
        self,
        user_id: str,
        tier: str,
        feature_type: str,
        tokens_used: int
    ) -> TokenUsageSnapshot:
        """Add actual usage to the feature and total counters.

        The two counters are updated one after the other, not in a
        transaction. Each write restarts its 30-day expiry.
        """
        if tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")

        tier = self.config.normalize_tier(tier)
        total_budget, feature_budget = self._budgets(tier, feature_type)

        feature_result = self.store.incr_by(
            self._key(tier, user_id, feature_type), tokens_used, MONTHLY_TTL_SECONDS
        )
        total_result = self.store.incr_by(
            self._key(tier, user_id, TOTAL_KEY), tokens_used, MONTHLY_TTL_SECONDS
        )

        if not (feature_result.ok and total_result.ok):
            logger.warning(
                "Token usage for %s/%s (%d tokens) was not fully recorded",
                tier, feature_type, tokens_used,
            )
            return TokenUsageSnapshot(
                total_budget=total_budget,
                total_remaining=0,
                total_used=0,
                feature_budget=0,
                feature_remaining=0,
                feature_used=0,
                tier_name=tier,
            )

        feature_used = feature_result.value
        total_used = total_result.value
        return TokenUsageSnapshot(
            total_budget=total_budget,
            total_remaining=max(0, total_budget - total_used),
            total_used=total_used,
            feature_budget=feature_budget,
            feature_remaining=max(0, feature_budget - feature_used),
            feature_used=feature_used,
            tier_name=tier,
        )

    def reset_user_token_budget(self, user_id: str, tier: str) -> bool:
        """Delete the user's total and every feature counter (admin).

        Counters for features outside the configured table, such as
        embeddings or fallback-slice features, are found by key prefix.
        """
        tier = self.config.normalize_tier(tier)
        found = self.store.keys_with_prefix(self._key(tier, user_id, ""))
        if not found.ok:
            return False

        keys = set(found.value)
        keys.update(self._key(tier, user_id, feature) for feature in self.config.features)
        keys.add(self._key(tier, user_id, TOTAL_KEY))
        return self.store.delete(*sorted(keys)).ok
