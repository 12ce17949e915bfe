"""
Configuration management and loading.

Holds the governance policy tables (tiers, feature allocations, model rates,
model selection) and loads them from YAML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping

import yaml


FREE_TIER = "free"
PREMIUM_TIER = "premium"

DEFAULT_FEATURE_FRACTION = 0.25


@dataclass(frozen=True)
class TierConfig:
    """Limits for a single subscription tier."""
    requests_per_day: int
    monthly_token_budget: int
    daily_cost_limit: float
    monthly_cost_limit: float
    hard_limits: bool = True

    def __post_init__(self):
        """Validate tier limits are positive."""
        if self.requests_per_day <= 0:
            raise ValueError("requests_per_day must be > 0")
        if self.monthly_token_budget <= 0:
            raise ValueError("monthly_token_budget must be > 0")
        if self.daily_cost_limit <= 0:
            raise ValueError("daily_cost_limit must be > 0")
        if self.monthly_cost_limit <= 0:
            raise ValueError("monthly_cost_limit must be > 0")


@dataclass(frozen=True)
class ModelRate:
    """Dollar cost per 1K tokens, priced separately for input and output."""
    input_cost_per_1k: float
    output_cost_per_1k: float

    def __post_init__(self):
        if self.input_cost_per_1k < 0:
            raise ValueError("input_cost_per_1k cannot be negative")
        if self.output_cost_per_1k < 0:
            raise ValueError("output_cost_per_1k cannot be negative")


@dataclass(frozen=True)
class TierModelPolicy:
    """Model used by a tier, with optional per-feature overrides."""
    default: str
    overrides: Dict[str, str] = field(default_factory=dict)

    def model_for(self, feature_type: str) -> str:
        return self.overrides.get(feature_type, self.default)


@dataclass(frozen=True)
class GovernanceConfig:
    """Complete governance policy.

    Loaded once at process start and handed to every tracker. Lookups are
    forgiving: unknown tiers resolve to the free tier, unknown features to
    ``default_feature_fraction`` and unknown models to ``default_model``.
    """
    tiers: Dict[str, TierConfig]
    features: Dict[str, float]
    models: Dict[str, ModelRate]
    tier_models: Dict[str, TierModelPolicy]
    default_model: str
    default_feature_fraction: float = DEFAULT_FEATURE_FRACTION

    def __post_init__(self):
        if FREE_TIER not in self.tiers:
            raise ValueError(f"tiers must define the '{FREE_TIER}' tier")
        if self.default_model not in self.models:
            raise ValueError(f"default_model '{self.default_model}' has no rate entry")
        if FREE_TIER not in self.tier_models:
            raise ValueError(f"tier_models must define the '{FREE_TIER}' tier")

    @staticmethod
    def normalize_tier(tier: str) -> str:
        return (tier or FREE_TIER).strip().lower()

    def get_tier(self, tier: str) -> TierConfig:
        """Get limits for a tier, falling back to the free tier."""
        return self.tiers.get(self.normalize_tier(tier), self.tiers[FREE_TIER])

    def is_exempt(self, tier: str) -> bool:
        """True when the tier is tracked but never hard-blocked."""
        return not self.get_tier(tier).hard_limits

    def feature_fraction(self, feature_type: str) -> float:
        return self.features.get(feature_type, self.default_feature_fraction)

    def get_model_rate(self, model: str) -> ModelRate:
        return self.models.get(model, self.models[self.default_model])

    def get_model_policy(self, tier: str) -> TierModelPolicy:
        return self.tier_models.get(self.normalize_tier(tier), self.tier_models[FREE_TIER])


DEFAULT_CONFIG = GovernanceConfig(
    tiers={
        "free": TierConfig(
            requests_per_day=20,
            monthly_token_budget=100_000,
            daily_cost_limit=0.25,
            monthly_cost_limit=5.00,
        ),
        "standard": TierConfig(
            requests_per_day=100,
            monthly_token_budget=500_000,
            daily_cost_limit=1.00,
            monthly_cost_limit=25.00,
        ),
        # Premium is tracked only; the request ceiling is a tracking cap.
        "premium": TierConfig(
            requests_per_day=10_000,
            monthly_token_budget=2_000_000,
            daily_cost_limit=5.00,
            monthly_cost_limit=100.00,
            hard_limits=False,
        ),
    },
    features={
        "writingContinuation": 0.7,
        "characterDevelopment": 0.1,
        "plotAnalysis": 0.1,
        "dialogueEnhancement": 0.1,
    },
    models={
        "gpt-3.5-turbo": ModelRate(input_cost_per_1k=0.0015, output_cost_per_1k=0.002),
        "gpt-4": ModelRate(input_cost_per_1k=0.03, output_cost_per_1k=0.06),
        "gpt-4-turbo": ModelRate(input_cost_per_1k=0.01, output_cost_per_1k=0.03),
        "text-embedding-ada-002": ModelRate(input_cost_per_1k=0.0001, output_cost_per_1k=0.0),
    },
    tier_models={
        "free": TierModelPolicy(default="gpt-3.5-turbo"),
        "standard": TierModelPolicy(default="gpt-3.5-turbo"),
        "premium": TierModelPolicy(
            default="gpt-4-turbo",
            overrides={
                "characterDevelopment": "gpt-4",
                "plotAnalysis": "gpt-4",
            },
        ),
    },
    default_model="gpt-3.5-turbo",
)


def load_governance_config(path: str) -> GovernanceConfig:
    """Load and validate governance policy from a YAML file.

    Strict validation ensures a typo in a limit or fraction cannot silently
    loosen admission control.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GovernanceConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Governance config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'tiers', 'features', 'models', 'tier_models',
                        'default_model', 'default_feature_fraction'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    for section in ('tiers', 'features', 'models', 'tier_models', 'default_model'):
        if section not in raw_config:
            raise ValueError(f"Missing required '{section}' section")

    tiers = {
        str(name).lower(): _parse_tier(data, f"tiers.{name}")
        for name, data in _require_mapping(raw_config['tiers'], 'tiers').items()
    }
    features = _parse_features(_require_mapping(raw_config['features'], 'features'))
    models = {
        str(name): _parse_model_rate(data, f"models.{name}")
        for name, data in _require_mapping(raw_config['models'], 'models').items()
    }
    tier_models = {
        str(name).lower(): _parse_tier_model_policy(data, f"tier_models.{name}", models)
        for name, data in _require_mapping(raw_config['tier_models'], 'tier_models').items()
    }

    default_model = raw_config['default_model']
    if not isinstance(default_model, str) or default_model not in models:
        raise ValueError("'default_model' must name a model defined under 'models'")

    default_fraction = raw_config.get('default_feature_fraction', DEFAULT_FEATURE_FRACTION)
    if not _is_number(default_fraction) or not 0 < default_fraction <= 1:
        raise ValueError("'default_feature_fraction' must be in (0, 1]")

    return GovernanceConfig(
        tiers=tiers,
        features=features,
        models=models,
        tier_models=tier_models,
        default_model=default_model,
        default_feature_fraction=float(default_fraction),
    )


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_mapping(data, path: str) -> Mapping:
    if not isinstance(data, dict) or not data:
        raise ValueError(f"'{path}' must be a non-empty dictionary")
    return data


def _parse_tier(data: Dict, path: str) -> TierConfig:
    """Parse and validate one tier entry.

    Args:
        data: Tier configuration data
        path: Path for error messages

    Returns:
        Validated TierConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    numeric_keys = ('requests_per_day', 'monthly_token_budget',
                    'daily_cost_limit', 'monthly_cost_limit')
    allowed_keys = set(numeric_keys) | {'hard_limits'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key in numeric_keys:
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        if not _is_number(data[key]) or data[key] <= 0:
            raise ValueError(f"'{key}' in {path} must be > 0")

    hard_limits = data.get('hard_limits', True)
    if not isinstance(hard_limits, bool):
        raise ValueError(f"'hard_limits' in {path} must be true or false")

    return TierConfig(
        requests_per_day=int(data['requests_per_day']),
        monthly_token_budget=int(data['monthly_token_budget']),
        daily_cost_limit=float(data['daily_cost_limit']),
        monthly_cost_limit=float(data['monthly_cost_limit']),
        hard_limits=hard_limits,
    )


def _parse_features(data: Mapping) -> Dict[str, float]:
    features = {}
    for name, fraction in data.items():
        if not _is_number(fraction) or not 0 < fraction <= 1:
            raise ValueError(f"Allocation for feature '{name}' must be in (0, 1]")
        features[str(name)] = float(fraction)

    total = sum(features.values())
    if abs(total - 1.0) > 1e-6:
        raise ValueError(f"Feature allocations must sum to 1.0, got {total:.4f}")
    return features


def _parse_model_rate(data: Dict, path: str) -> ModelRate:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    allowed_keys = {'input_cost_per_1k', 'output_cost_per_1k'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for key in allowed_keys:
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
        if not _is_number(data[key]) or data[key] < 0:
            raise ValueError(f"'{key}' in {path} must be >= 0")

    return ModelRate(
        input_cost_per_1k=float(data['input_cost_per_1k']),
        output_cost_per_1k=float(data['output_cost_per_1k']),
    )


def _parse_tier_model_policy(data, path: str, models: Dict[str, ModelRate]) -> TierModelPolicy:
    # A bare string is shorthand for a policy without overrides
    if isinstance(data, str):
        data = {'default': data}
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a model name or a dictionary")

    unknown_keys = set(data.keys()) - {'default', 'overrides'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    if 'default' not in data:
        raise ValueError(f"Missing required 'default' in {path}")

    overrides = data.get('overrides') or {}
    if not isinstance(overrides, dict):
        raise ValueError(f"'overrides' in {path} must be a dictionary")

    for model in [data['default'], *overrides.values()]:
        if model not in models:
            raise ValueError(f"Model '{model}' in {path} has no rate entry")

    return TierModelPolicy(
        default=data['default'],
        overrides={str(k): str(v) for k, v in overrides.items()},
    )
