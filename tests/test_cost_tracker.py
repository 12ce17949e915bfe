"""
Unit tests for cost accounting and dollar budgets.

Tests counter accumulation, limit checks, history and calendar buckets.
"""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest

from novylist_governance.core.cost_tracker import (
    DAILY_TTL_SECONDS,
    HISTORY_CAP,
    MONTHLY_TTL_SECONDS,
    RECORD_TTL_SECONDS,
    CostTracker,
    daily_bucket,
    monthly_bucket,
)
from novylist_governance.core.token_budget import TokenBudgetTracker
from novylist_governance.storage.store import UsageStore

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class TestBuckets:
    """Test calendar bucket names."""

    def test_daily_and_monthly_buckets(self):
        assert daily_bucket(NOW) == "2024-03-15"
        assert monthly_bucket(NOW) == "2024-03"

    def test_buckets_use_utc(self):
        local = datetime(2024, 3, 31, 22, 0, tzinfo=timezone(timedelta(hours=-5)))
        assert daily_bucket(local) == "2024-04-01"
        assert monthly_bucket(local) == "2024-04"


class TestCostTracker:
    """Test cost recording and budget checks."""

    def setup_method(self):
        """Set up test environment."""
        self.client = fakeredis.FakeRedis(decode_responses=True)
        self.store = UsageStore(self.client)
        self.tracker = CostTracker(self.store)

    def test_premium_user_two_requests(self):
        first = self.tracker.record_cost(
            "vip", "premium", "writingContinuation", "gpt-4-turbo", 1000, 3000, now=NOW)
        second = self.tracker.record_cost(
            "vip", "premium", "writingContinuation", "gpt-4-turbo", 2000, 1000, now=NOW)

        # 1000/1000 * $0.01 + 3000/1000 * $0.03 = $0.10
        assert first.total_cost == pytest.approx(0.10)
        # 2000/1000 * $0.01 + 1000/1000 * $0.03 = $0.05
        assert second.total_cost == pytest.approx(0.05)
        assert second.daily_usage == pytest.approx(0.15)
        assert second.monthly_usage == pytest.approx(0.15)
        assert second.feature_daily_usage == pytest.approx(0.15)
        assert second.daily_remaining == pytest.approx(4.85)
        assert second.recorded

    def test_fresh_user_within_budget(self):
        status = self.tracker.check_budget_limits("user-1", "free", 0.00175, now=NOW)
        assert not status.has_exceeded_limit
        assert status.daily_usage == 0.0
        assert status.daily_limit == 0.25
        assert status.monthly_remaining == 5.00

    def test_estimate_that_would_exceed_daily_limit(self):
        self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 50_000, 50_000, now=NOW)

        # $0.075 + $0.10 = $0.175 spent; another $0.10 crosses $0.25
        status = self.tracker.check_budget_limits("user-1", "free", 0.10, now=NOW)
        assert status.would_exceed_daily_limit
        assert not status.would_exceed_monthly_limit
        assert status.has_exceeded_limit

    def test_estimate_exactly_at_limit_allowed(self):
        status = self.tracker.check_budget_limits("user-1", "free", 0.25, now=NOW)
        assert not status.has_exceeded_limit

    def test_remaining_never_negative(self):
        # $0.03 + $0.30 = $0.33, past the $0.25 daily limit
        receipt = self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-4", 1000, 5000, now=NOW)
        assert receipt.daily_remaining == 0.0

        status = self.tracker.check_budget_limits("user-1", "free", 0.0, now=NOW)
        assert status.daily_usage == pytest.approx(0.33)
        assert status.daily_remaining == 0.0
        assert status.has_exceeded_limit

    def test_premium_is_never_blocked(self):
        # $3.00 + $6.00 = $9.00, past the $5.00 daily limit
        self.tracker.record_cost("vip", "premium", "plotAnalysis", "gpt-4", 100_000, 100_000, now=NOW)

        status = self.tracker.check_budget_limits("vip", "premium", 1.0, now=NOW)
        assert status.would_exceed_daily_limit
        assert not status.has_exceeded_limit
        assert status.daily_remaining == 0.0

    def test_counters_expire(self):
        self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 100, 100, now=NOW)

        daily_ttl = self.client.ttl("novylist:cost:free:user-1:daily:2024-03-15")
        monthly_ttl = self.client.ttl("novylist:cost:free:user-1:monthly:2024-03")
        feature_ttl = self.client.ttl("novylist:cost:free:user-1:feature:plotAnalysis:daily:2024-03-15")
        assert DAILY_TTL_SECONDS - 5 <= daily_ttl <= DAILY_TTL_SECONDS
        assert MONTHLY_TTL_SECONDS - 5 <= monthly_ttl <= MONTHLY_TTL_SECONDS
        assert DAILY_TTL_SECONDS - 5 <= feature_ttl <= DAILY_TTL_SECONDS

    def test_detail_record_written(self):
        receipt = self.tracker.record_cost(
            "user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 500, 500, now=NOW)

        key = f"novylist:cost:record:{receipt.request_id}"
        assert RECORD_TTL_SECONDS - 5 <= self.client.ttl(key) <= RECORD_TTL_SECONDS
        assert self.client.lrange("novylist:cost:history:user-1", 0, -1) == [receipt.request_id]

    def test_history_newest_first(self):
        for feature in ("plotAnalysis", "dialogueEnhancement", "characterDevelopment"):
            self.tracker.record_cost("user-1", "free", feature, "gpt-3.5-turbo", 10, 10, now=NOW)

        history = self.tracker.get_user_cost_history("user-1")
        assert [r.feature_type for r in history] == [
            "characterDevelopment", "dialogueEnhancement", "plotAnalysis"]
        assert history[0].timestamp == NOW
        assert history[0].daily_key == "2024-03-15"
        assert history[0].monthly_key == "2024-03"

    def test_history_limit(self):
        for _ in range(5):
            self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 10, 10, now=NOW)
        assert len(self.tracker.get_user_cost_history("user-1", limit=2)) == 2
        assert self.tracker.get_user_cost_history("user-1", limit=0) == []

    def test_history_capped(self):
        for _ in range(HISTORY_CAP + 5):
            self.tracker.record_cost("user-1", "premium", "plotAnalysis", "gpt-3.5-turbo", 1, 1, now=NOW)
        assert len(self.tracker.get_user_cost_history("user-1", limit=500)) == HISTORY_CAP

    def test_history_skips_missing_and_malformed_records(self):
        good = self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 10, 10, now=NOW)
        self.client.lpush("novylist:cost:history:user-1", "expired-id")
        self.client.set("novylist:cost:record:broken-id", "{not json")
        self.client.lpush("novylist:cost:history:user-1", "broken-id")

        history = self.tracker.get_user_cost_history("user-1")
        assert [r.request_id for r in history] == [good.request_id]

    def test_empty_history(self):
        assert self.tracker.get_user_cost_history("nobody") == []

    def test_monthly_cost_resets_on_calendar_month_but_tokens_do_not(self):
        tokens = TokenBudgetTracker(self.store)
        march = datetime(2024, 3, 31, 23, 0, tzinfo=timezone.utc)
        april = datetime(2024, 4, 1, 1, 0, tzinfo=timezone.utc)

        self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 1000, 1000, now=march)
        tokens.record_token_usage("user-1", "free", "plotAnalysis", 2000)

        status = self.tracker.check_budget_limits("user-1", "free", 0.0, now=april)
        assert status.monthly_usage == 0.0
        assert status.daily_usage == 0.0

        token_status = tokens.check_token_budget("user-1", "free", "plotAnalysis", 0)
        assert token_status.total_remaining == 98_000

    def test_budget_status_report(self):
        self.tracker.record_cost("user-1", "standard", "plotAnalysis", "gpt-4", 5000, 0, now=NOW)
        self.tracker.record_cost("user-1", "standard", "writingContinuation", "gpt-4", 0, 5000, now=NOW)

        report = self.tracker.get_user_budget_status("user-1", "standard", now=NOW)
        # $0.15 + $0.30 = $0.45 of $1.00 daily, $25.00 monthly
        assert report.daily_usage == pytest.approx(0.45)
        assert report.daily_remaining == pytest.approx(0.55)
        assert report.daily_percent_used == pytest.approx(45.0)
        assert report.monthly_percent_used == pytest.approx(1.8)
        assert report.features["plotAnalysis"]["daily_usage"] == pytest.approx(0.15)
        assert report.features["writingContinuation"]["monthly_usage"] == pytest.approx(0.30)
        assert report.features["dialogueEnhancement"]["daily_usage"] == 0.0

    def test_reset_daily_keeps_monthly(self):
        self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-4", 1000, 5000, now=NOW)
        assert self.tracker.reset_user_daily_costs("user-1", "free", now=NOW)

        report = self.tracker.get_user_budget_status("user-1", "free", now=NOW)
        assert report.daily_usage == 0.0
        assert report.features["plotAnalysis"]["daily_usage"] == 0.0
        assert report.monthly_usage == pytest.approx(0.33)

    def test_reset_monthly_keeps_daily(self):
        self.tracker.record_cost("user-1", "free", "plotAnalysis", "gpt-4", 1000, 5000, now=NOW)
        assert self.tracker.reset_user_monthly_costs("user-1", "free", now=NOW)

        report = self.tracker.get_user_budget_status("user-1", "free", now=NOW)
        assert report.monthly_usage == 0.0
        assert report.daily_usage == pytest.approx(0.33)


class TestCostTrackerFailOpen:
    """Test behavior when the store is unreachable."""

    def setup_method(self):
        """Set up a disconnected in-memory server."""
        server = fakeredis.FakeServer()
        server.connected = False
        self.tracker = CostTracker(UsageStore(fakeredis.FakeRedis(server=server, decode_responses=True)))

    def test_check_fails_open_with_zero_usage(self):
        status = self.tracker.check_budget_limits("user-1", "free", 100.0, now=NOW)
        assert not status.has_exceeded_limit
        assert status.daily_usage == 0.0
        assert status.daily_remaining == 0.25

    def test_record_still_prices_the_call(self):
        receipt = self.tracker.record_cost(
            "user-1", "free", "plotAnalysis", "gpt-3.5-turbo", 500, 500, now=NOW)
        assert not receipt.recorded
        assert receipt.request_id is None
        assert receipt.total_cost == pytest.approx(0.00175)
        assert receipt.daily_usage == 0.0

    def test_history_empty(self):
        assert self.tracker.get_user_cost_history("user-1") == []

    def test_report_has_zero_usage(self):
        report = self.tracker.get_user_budget_status("user-1", "free", now=NOW)
        assert report.daily_usage == 0.0
        assert report.features == {}

    def test_resets_report_failure(self):
        assert not self.tracker.reset_user_daily_costs("user-1", "free", now=NOW)
        assert not self.tracker.reset_user_monthly_costs("user-1", "free", now=NOW)
