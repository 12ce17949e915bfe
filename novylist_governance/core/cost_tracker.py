"""
Cost accounting and budget limits.

Records the dollar cost of completed AI calls in daily and monthly counters
(overall and per feature), keeps a capped per-user history of detail
records, and checks prospective costs against the tier's dollar budgets.

Enforcement Order (per check):
1. Daily budget - today's spend plus the estimate must fit the daily limit
2. Monthly budget - this month's spend plus the estimate must fit the monthly limit
Exempt tiers are tracked but never reported as exceeded.
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from novylist_governance.config.loader import DEFAULT_CONFIG, GovernanceConfig
from novylist_governance.storage.models import CostRecord
from novylist_governance.storage.store import UsageStore, parse_float, values_or_empty

from .pricing import CostEstimate, estimate_cost

logger = logging.getLogger(__name__)

DAILY_TTL_SECONDS = 24 * 60 * 60
MONTHLY_TTL_SECONDS = 31 * 24 * 60 * 60
RECORD_TTL_SECONDS = 90 * 24 * 60 * 60
HISTORY_CAP = 100


def daily_bucket(now: datetime) -> str:
    """UTC calendar day, YYYY-MM-DD."""
    return now.astimezone(timezone.utc).strftime("%Y-%m-%d")


def monthly_bucket(now: datetime) -> str:
    """UTC calendar month, YYYY-MM."""
    return now.astimezone(timezone.utc).strftime("%Y-%m")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BudgetStatus:
    """Result of checking a prospective cost against dollar budgets."""
    has_exceeded_limit: bool
    would_exceed_daily_limit: bool
    would_exceed_monthly_limit: bool
    daily_usage: float
    monthly_usage: float
    daily_limit: float
    monthly_limit: float
    daily_remaining: float
    monthly_remaining: float
    estimated_cost: float
    tier_name: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CostReceipt:
    """Actual cost of a completed call and the counters it moved."""
    request_id: Optional[str]
    estimate: CostEstimate
    daily_usage: float
    monthly_usage: float
    feature_daily_usage: float
    feature_monthly_usage: float
    daily_limit: float
    monthly_limit: float
    daily_remaining: float
    monthly_remaining: float
    timestamp: datetime
    tier_name: str
    recorded: bool = True

    @property
    def input_cost(self) -> float:
        return self.estimate.input_cost

    @property
    def output_cost(self) -> float:
        return self.estimate.output_cost

    @property
    def total_cost(self) -> float:
        return self.estimate.total_cost


@dataclass(frozen=True)
class BudgetReport:
    """Read-only view of a user's spend for display."""
    tier_name: str
    daily_usage: float
    monthly_usage: float
    daily_limit: float
    monthly_limit: float
    daily_remaining: float
    monthly_remaining: float
    daily_percent_used: float
    monthly_percent_used: float
    features: Dict[str, Dict[str, float]] = field(default_factory=dict)


class CostTracker:
    """Dollar spend counters and cost history.

    Keys:
        cost:{tier}:{user}:daily:{YYYY-MM-DD}
        cost:{tier}:{user}:monthly:{YYYY-MM}
        cost:{tier}:{user}:feature:{feature}:daily:{YYYY-MM-DD}
        cost:{tier}:{user}:feature:{feature}:monthly:{YYYY-MM}
        cost:record:{request_id}
        cost:history:{user}
    """

    def __init__(self, store: UsageStore, config: GovernanceConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config

    def _daily_key(self, tier: str, user_id: str, now: datetime) -> str:
        return f"cost:{tier}:{user_id}:daily:{daily_bucket(now)}"

    def _monthly_key(self, tier: str, user_id: str, now: datetime) -> str:
        return f"cost:{tier}:{user_id}:monthly:{monthly_bucket(now)}"

    def _feature_daily_key(self, tier: str, user_id: str, feature_type: str, now: datetime) -> str:
        return f"cost:{tier}:{user_id}:feature:{feature_type}:daily:{daily_bucket(now)}"

    def _feature_monthly_key(self, tier: str, user_id: str, feature_type: str, now: datetime) -> str:
        return f"cost:{tier}:{user_id}:feature:{feature_type}:monthly:{monthly_bucket(now)}"

    @staticmethod
    def _history_key(user_id: str) -> str:
        return f"cost:history:{user_id}"

    @staticmethod
    def _record_key(request_id: str) -> str:
        return f"cost:record:{request_id}"

    def check_budget_limits(
        self,
        user_id: str,
        tier: str,
        estimated_cost: float,
        now: Optional[datetime] = None
    ) -> BudgetStatus:
        """Check whether ``estimated_cost`` would push spend past a limit.

        Args:
            user_id: User identifier
            tier: Subscription tier
            estimated_cost: Dollar estimate for the prospective request
            now: Current time (for deterministic testing)

        Returns:
            BudgetStatus; permissive with zero usage if the store cannot be read
        """
        now = now or _utcnow()
        tier = self.config.normalize_tier(tier)
        limits = self.config.get_tier(tier)

        result = self.store.get_many([
            self._daily_key(tier, user_id, now),
            self._monthly_key(tier, user_id, now),
        ])
        if not result.ok:
            logger.warning("Cost counters unavailable for tier %s; failing open", tier)
            return BudgetStatus(
                has_exceeded_limit=False,
                would_exceed_daily_limit=False,
                would_exceed_monthly_limit=False,
                daily_usage=0.0,
                monthly_usage=0.0,
                daily_limit=limits.daily_cost_limit,
                monthly_limit=limits.monthly_cost_limit,
                daily_remaining=limits.daily_cost_limit,
                monthly_remaining=limits.monthly_cost_limit,
                estimated_cost=estimated_cost,
                tier_name=tier,
            )

        daily_raw, monthly_raw = values_or_empty(result, 2)
        daily_usage = parse_float(daily_raw)
        monthly_usage = parse_float(monthly_raw)

        would_exceed_daily = daily_usage + estimated_cost > limits.daily_cost_limit
        would_exceed_monthly = monthly_usage + estimated_cost > limits.monthly_cost_limit

        return BudgetStatus(
            has_exceeded_limit=limits.hard_limits and (would_exceed_daily or would_exceed_monthly),
            would_exceed_daily_limit=would_exceed_daily,
            would_exceed_monthly_limit=would_exceed_monthly,
            daily_usage=daily_usage,
            monthly_usage=monthly_usage,
            daily_limit=limits.daily_cost_limit,
            monthly_limit=limits.monthly_cost_limit,
            daily_remaining=max(0.0, limits.daily_cost_limit - daily_usage),
            monthly_remaining=max(0.0, limits.monthly_cost_limit - monthly_usage),
            estimated_cost=estimated_cost,
            tier_name=tier,
        )

    def record_cost(
        self,
        user_id: str,
        tier: str,
        feature_type: str,
        model_name: str,
        input_tokens: int,
        output_tokens: int,
        now: Optional[datetime] = None
    ) -> CostReceipt:
        """Account for a completed call.

        Increments the four spend counters, writes an immutable detail record
        and prepends its id to the user's capped history. If the store fails
        partway, the receipt still carries the computed cost and is marked
        ``recorded=False``.
        """
        now = now or _utcnow()
        tier = self.config.normalize_tier(tier)
        limits = self.config.get_tier(tier)
        estimate = estimate_cost(model_name, input_tokens, output_tokens, self.config)
        total_cost = estimate.total_cost

        daily = self.store.incr_by_float(
            self._daily_key(tier, user_id, now), total_cost, DAILY_TTL_SECONDS)
        monthly = self.store.incr_by_float(
            self._monthly_key(tier, user_id, now), total_cost, MONTHLY_TTL_SECONDS)
        feature_daily = self.store.incr_by_float(
            self._feature_daily_key(tier, user_id, feature_type, now), total_cost, DAILY_TTL_SECONDS)
        feature_monthly = self.store.incr_by_float(
            self._feature_monthly_key(tier, user_id, feature_type, now), total_cost, MONTHLY_TTL_SECONDS)

        request_id = str(uuid.uuid4())
        record = CostRecord(
            request_id=request_id,
            user_id=user_id,
            tier=tier,
            feature_type=feature_type,
            model_name=model_name,
            input_tokens=estimate.input_tokens,
            output_tokens=estimate.output_tokens,
            total_tokens=estimate.total_tokens,
            input_cost=estimate.input_cost,
            output_cost=estimate.output_cost,
            total_cost=total_cost,
            timestamp=now,
            daily_key=daily_bucket(now),
            monthly_key=monthly_bucket(now),
        )
        stored = self.store.set(self._record_key(request_id), record.to_json(), RECORD_TTL_SECONDS)
        pushed = self.store.push_capped(
            self._history_key(user_id), request_id, HISTORY_CAP, RECORD_TTL_SECONDS)

        results = (daily, monthly, feature_daily, feature_monthly, stored, pushed)
        recorded = all(r.ok for r in results)
        if not recorded:
            logger.warning(
                "Cost of $%.6f for %s/%s was not fully recorded", total_cost, tier, feature_type)

        daily_usage = daily.value_or(0.0)
        monthly_usage = monthly.value_or(0.0)
        return CostReceipt(
            request_id=request_id if stored.ok else None,
            estimate=estimate,
            daily_usage=daily_usage,
            monthly_usage=monthly_usage,
            feature_daily_usage=feature_daily.value_or(0.0),
            feature_monthly_usage=feature_monthly.value_or(0.0),
            daily_limit=limits.daily_cost_limit,
            monthly_limit=limits.monthly_cost_limit,
            daily_remaining=max(0.0, limits.daily_cost_limit - daily_usage),
            monthly_remaining=max(0.0, limits.monthly_cost_limit - monthly_usage),
            timestamp=now,
            tier_name=tier,
            recorded=recorded,
        )

    def get_user_cost_history(self, user_id: str, limit: int = 20) -> List[CostRecord]:
        """Return up to ``limit`` most recent cost records, newest first.

        Records that have expired or cannot be parsed are skipped.
        """
        if limit <= 0:
            return []

        ids = self.store.lrange(self._history_key(user_id), 0, limit - 1).value_or([])
        if not ids:
            return []

        raw_records = values_or_empty(
            self.store.get_many([self._record_key(i) for i in ids]), len(ids))

        records = []
        for request_id, raw in zip(ids, raw_records):
            if raw is None:
                continue
            try:
                records.append(CostRecord.from_json(raw))
            except ValueError as e:
                logger.warning("Skipping cost record %s: %s", request_id, e)
        return records

    def get_user_budget_status(
        self,
        user_id: str,
        tier: str,
        now: Optional[datetime] = None
    ) -> BudgetReport:
        """Summarize today's and this month's spend, with a per-feature breakdown."""
        now = now or _utcnow()
        tier = self.config.normalize_tier(tier)
        limits = self.config.get_tier(tier)
        features = list(self.config.features)

        keys = [self._daily_key(tier, user_id, now), self._monthly_key(tier, user_id, now)]
        for feature_type in features:
            keys.append(self._feature_daily_key(tier, user_id, feature_type, now))
            keys.append(self._feature_monthly_key(tier, user_id, feature_type, now))

        result = self.store.get_many(keys)
        values = [parse_float(v) for v in values_or_empty(result, len(keys))]

        daily_usage, monthly_usage = values[0], values[1]
        breakdown = {}
        if result.ok:
            for index, feature_type in enumerate(features):
                breakdown[feature_type] = {
                    "daily_usage": values[2 + index * 2],
                    "monthly_usage": values[3 + index * 2],
                }

        return BudgetReport(
            tier_name=tier,
            daily_usage=daily_usage,
            monthly_usage=monthly_usage,
            daily_limit=limits.daily_cost_limit,
            monthly_limit=limits.monthly_cost_limit,
            daily_remaining=max(0.0, limits.daily_cost_limit - daily_usage),
            monthly_remaining=max(0.0, limits.monthly_cost_limit - monthly_usage),
            daily_percent_used=daily_usage / limits.daily_cost_limit * 100,
            monthly_percent_used=monthly_usage / limits.monthly_cost_limit * 100,
            features=breakdown,
        )

    def reset_user_daily_costs(self, user_id: str, tier: str, now: Optional[datetime] = None) -> bool:
        """Delete today's overall and per-feature counters (admin)."""
        now = now or _utcnow()
        tier = self.config.normalize_tier(tier)
        keys = [self._daily_key(tier, user_id, now)]
        keys.extend(self._feature_daily_key(tier, user_id, f, now) for f in self.config.features)
        return self.store.delete(*keys).ok

    def reset_user_monthly_costs(self, user_id: str, tier: str, now: Optional[datetime] = None) -> bool:
        """Delete this month's overall and per-feature counters (admin)."""
        now = now or _utcnow()
        tier = self.config.normalize_tier(tier)
        keys = [self._monthly_key(tier, user_id, now)]
        keys.extend(self._feature_monthly_key(tier, user_id, f, now) for f in self.config.features)
        return self.store.delete(*keys).ok
