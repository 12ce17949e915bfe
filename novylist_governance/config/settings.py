"""
Environment settings.

Resolves connection details and the optional policy file from the process
environment (and a local .env file, when present).
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .loader import DEFAULT_CONFIG, GovernanceConfig, load_governance_config


DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_KEY_PREFIX = "novylist:"


@dataclass(frozen=True)
class Settings:
    """Process-level settings."""
    redis_url: str = DEFAULT_REDIS_URL
    key_prefix: str = DEFAULT_KEY_PREFIX
    config_path: Optional[str] = None


def get_settings() -> Settings:
    """Read settings from the environment.

    ``OPENAI_API_KEY`` is not handled here; the OpenAI client reads it itself.
    """
    load_dotenv()
    return Settings(
        redis_url=os.environ.get("NOVYLIST_REDIS_URL", DEFAULT_REDIS_URL),
        key_prefix=os.environ.get("NOVYLIST_REDIS_KEY_PREFIX", DEFAULT_KEY_PREFIX),
        config_path=os.environ.get("NOVYLIST_GOVERNANCE_CONFIG") or None,
    )


def resolve_config(path: Optional[str] = None, settings: Optional[Settings] = None) -> GovernanceConfig:
    """Load the policy file if one is given, otherwise use the built-in tables."""
    config_path = path or (settings.config_path if settings else None)
    if config_path:
        return load_governance_config(config_path)
    return DEFAULT_CONFIG
