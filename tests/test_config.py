"""
Unit tests for configuration loading and validation.

Tests strict validation of governance policy files and the built-in tables.
"""

import os
import tempfile
from unittest.mock import patch

import pytest
import yaml

from novylist_governance.config.loader import (
    DEFAULT_CONFIG,
    GovernanceConfig,
    ModelRate,
    TierConfig,
    load_governance_config,
)
from novylist_governance.config.settings import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_REDIS_URL,
    get_settings,
    resolve_config,
)


def _valid_config() -> dict:
    return {
        "tiers": {
            "free": {
                "requests_per_day": 10,
                "monthly_token_budget": 50000,
                "daily_cost_limit": 0.1,
                "monthly_cost_limit": 2.0,
            },
            "premium": {
                "requests_per_day": 5000,
                "monthly_token_budget": 1000000,
                "daily_cost_limit": 3.0,
                "monthly_cost_limit": 60.0,
                "hard_limits": False,
            },
        },
        "features": {
            "writingContinuation": 0.5,
            "plotAnalysis": 0.5,
        },
        "models": {
            "cheap-model": {"input_cost_per_1k": 0.001, "output_cost_per_1k": 0.002},
            "big-model": {"input_cost_per_1k": 0.02, "output_cost_per_1k": 0.04},
        },
        "tier_models": {
            "free": "cheap-model",
            "premium": {"default": "cheap-model", "overrides": {"plotAnalysis": "big-model"}},
        },
        "default_model": "cheap-model",
    }


class TestDefaultConfig:
    """Test the built-in policy tables."""

    def test_tier_limits(self):
        free = DEFAULT_CONFIG.get_tier("free")
        assert free.requests_per_day == 20
        assert free.monthly_token_budget == 100_000
        assert free.daily_cost_limit == 0.25
        assert free.monthly_cost_limit == 5.00

        standard = DEFAULT_CONFIG.get_tier("standard")
        assert standard.requests_per_day == 100
        assert standard.daily_cost_limit == 1.00
        assert standard.monthly_cost_limit == 25.00

        premium = DEFAULT_CONFIG.get_tier("premium")
        assert premium.daily_cost_limit == 5.00
        assert premium.monthly_cost_limit == 100.00
        assert premium.hard_limits is False

    def test_feature_fractions_sum_to_one(self):
        assert sum(DEFAULT_CONFIG.features.values()) == pytest.approx(1.0)

    def test_unknown_feature_fraction(self):
        assert DEFAULT_CONFIG.feature_fraction("worldBuilding") == 0.25

    def test_unknown_tier_falls_back_to_free(self):
        assert DEFAULT_CONFIG.get_tier("gold") == DEFAULT_CONFIG.get_tier("free")
        assert DEFAULT_CONFIG.get_tier("Standard").requests_per_day == 100

    def test_only_premium_is_exempt(self):
        assert DEFAULT_CONFIG.is_exempt("premium")
        assert not DEFAULT_CONFIG.is_exempt("standard")
        assert not DEFAULT_CONFIG.is_exempt("free")

    def test_unknown_model_rate(self):
        assert DEFAULT_CONFIG.get_model_rate("nope") == DEFAULT_CONFIG.models["gpt-3.5-turbo"]


class TestConfigObjects:
    """Test dataclass validation."""

    def test_tier_rejects_non_positive_limits(self):
        with pytest.raises(ValueError, match="daily_cost_limit must be > 0"):
            TierConfig(requests_per_day=1, monthly_token_budget=1, daily_cost_limit=0, monthly_cost_limit=1)

    def test_model_rate_rejects_negative(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            ModelRate(input_cost_per_1k=-0.1, output_cost_per_1k=0.1)

    def test_config_requires_free_tier(self):
        with pytest.raises(ValueError, match="'free' tier"):
            GovernanceConfig(
                tiers={"premium": DEFAULT_CONFIG.get_tier("premium")},
                features=dict(DEFAULT_CONFIG.features),
                models=dict(DEFAULT_CONFIG.models),
                tier_models=dict(DEFAULT_CONFIG.tier_models),
                default_model="gpt-3.5-turbo",
            )


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config = load_governance_config(self._write_config(_valid_config()))

        assert config.get_tier("free").requests_per_day == 10
        assert config.get_tier("premium").hard_limits is False
        assert config.get_tier("free").hard_limits is True
        assert config.feature_fraction("plotAnalysis") == 0.5
        assert config.get_model_rate("big-model").output_cost_per_1k == 0.04
        assert config.get_model_policy("premium").model_for("plotAnalysis") == "big-model"
        assert config.get_model_policy("free").model_for("plotAnalysis") == "cheap-model"
        assert config.default_feature_fraction == 0.25

    def test_tier_names_are_lowercased(self):
        data = _valid_config()
        data["tiers"]["Standard"] = dict(data["tiers"]["free"])
        config = load_governance_config(self._write_config(data))
        assert "standard" in config.tiers

    def test_missing_file_raises(self):
        with pytest.raises(FileNotFoundError, match="not found"):
            load_governance_config(os.path.join(self.temp_dir, "missing.yaml"))

    def test_empty_file_raises(self):
        path = os.path.join(self.temp_dir, "empty.yaml")
        open(path, "w").close()
        with pytest.raises(ValueError, match="empty"):
            load_governance_config(path)

    def test_invalid_yaml_raises(self):
        path = os.path.join(self.temp_dir, "broken.yaml")
        with open(path, "w", encoding="utf-8") as f:
            f.write("tiers: [unclosed")
        with pytest.raises(yaml.YAMLError):
            load_governance_config(path)

    def test_unknown_top_level_key_rejected(self):
        data = _valid_config()
        data["budgets"] = {}
        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_governance_config(self._write_config(data))

    def test_missing_section_rejected(self):
        data = _valid_config()
        del data["models"]
        with pytest.raises(ValueError, match="Missing required 'models'"):
            load_governance_config(self._write_config(data))

    def test_unknown_tier_key_rejected(self):
        data = _valid_config()
        data["tiers"]["free"]["burst"] = 3
        with pytest.raises(ValueError, match="Unknown keys in tiers.free"):
            load_governance_config(self._write_config(data))

    def test_missing_tier_limit_rejected(self):
        data = _valid_config()
        del data["tiers"]["free"]["daily_cost_limit"]
        with pytest.raises(ValueError, match="Missing required 'daily_cost_limit'"):
            load_governance_config(self._write_config(data))

    def test_non_positive_tier_limit_rejected(self):
        data = _valid_config()
        data["tiers"]["free"]["requests_per_day"] = 0
        with pytest.raises(ValueError, match="'requests_per_day' in tiers.free must be > 0"):
            load_governance_config(self._write_config(data))

    def test_hard_limits_must_be_boolean(self):
        data = _valid_config()
        data["tiers"]["free"]["hard_limits"] = "yes"
        with pytest.raises(ValueError, match="hard_limits"):
            load_governance_config(self._write_config(data))

    def test_free_tier_required(self):
        data = _valid_config()
        del data["tiers"]["free"]
        with pytest.raises(ValueError, match="'free' tier"):
            load_governance_config(self._write_config(data))

    def test_fractions_must_sum_to_one(self):
        data = _valid_config()
        data["features"]["plotAnalysis"] = 0.4
        with pytest.raises(ValueError, match="sum to 1.0"):
            load_governance_config(self._write_config(data))

    def test_fraction_out_of_range_rejected(self):
        data = _valid_config()
        data["features"] = {"writingContinuation": 1.5}
        with pytest.raises(ValueError, match="must be in \\(0, 1\\]"):
            load_governance_config(self._write_config(data))

    def test_negative_model_rate_rejected(self):
        data = _valid_config()
        data["models"]["big-model"]["input_cost_per_1k"] = -1
        with pytest.raises(ValueError, match="must be >= 0"):
            load_governance_config(self._write_config(data))

    def test_default_model_must_be_priced(self):
        data = _valid_config()
        data["default_model"] = "ghost-model"
        with pytest.raises(ValueError, match="default_model"):
            load_governance_config(self._write_config(data))

    def test_policy_model_must_be_priced(self):
        data = _valid_config()
        data["tier_models"]["premium"]["overrides"]["plotAnalysis"] = "ghost-model"
        with pytest.raises(ValueError, match="ghost-model"):
            load_governance_config(self._write_config(data))

    def test_default_feature_fraction_override(self):
        data = _valid_config()
        data["default_feature_fraction"] = 0.05
        config = load_governance_config(self._write_config(data))
        assert config.feature_fraction("unknown") == 0.05


class TestSettings:
    """Test environment settings."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True), \
                patch("novylist_governance.config.settings.load_dotenv"):
            settings = get_settings()
        assert settings.redis_url == DEFAULT_REDIS_URL
        assert settings.key_prefix == DEFAULT_KEY_PREFIX
        assert settings.config_path is None

    def test_environment_overrides(self):
        env = {
            "NOVYLIST_REDIS_URL": "redis://cache:6380/2",
            "NOVYLIST_REDIS_KEY_PREFIX": "test:",
            "NOVYLIST_GOVERNANCE_CONFIG": "/etc/novylist/policy.yaml",
        }
        with patch.dict(os.environ, env, clear=True), \
                patch("novylist_governance.config.settings.load_dotenv"):
            settings = get_settings()
        assert settings.redis_url == "redis://cache:6380/2"
        assert settings.key_prefix == "test:"
        assert settings.config_path == "/etc/novylist/policy.yaml"

    def test_resolve_config_without_path_uses_defaults(self):
        assert resolve_config() is DEFAULT_CONFIG

    def test_resolve_config_loads_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(yaml.dump(_valid_config()), encoding="utf-8")
        config = resolve_config(str(path))
        assert config.default_model == "cheap-model"
