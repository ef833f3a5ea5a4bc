"""
Configuration management and loading.

Handles application settings and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from eduvoice.core.pricing import DEFAULT_FEATURE_COSTS, FEATURES


@dataclass(frozen=True)
class ProviderConfig:
    """Generative model endpoint and where the platform key comes from."""
    model: str = "gemini-2.0-flash"
    base_url: Optional[str] = "https://generativelanguage.googleapis.com/v1beta/openai/"
    api_key_env: str = "EDUVOICE_PLATFORM_API_KEY"

    def __post_init__(self):
        if not self.model.strip():
            raise ValueError("provider.model cannot be empty")
        if not self.api_key_env.strip():
            raise ValueError("provider.api_key_env cannot be empty")

    def platform_secret(self) -> Optional[str]:
        """Read the platform API key from the environment."""
        value = os.environ.get(self.api_key_env, "").strip()
        return value or None


@dataclass(frozen=True)
class TokenConfig:
    """Token grants and per-feature costs."""
    subscription_grant: int = 60000
    voucher_grant: int = 60000
    subscription_days: int = 30
    costs: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_FEATURE_COSTS))

    def __post_init__(self):
        if self.subscription_grant < 0:
            raise ValueError("subscription_grant must be >= 0")
        if self.voucher_grant <= 0:
            raise ValueError("voucher_grant must be > 0")
        if self.subscription_days <= 0:
            raise ValueError("subscription_days must be > 0")


@dataclass(frozen=True)
class LedgerConfig:
    max_retries: int = 50

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")


@dataclass(frozen=True)
class ExamConfig:
    grace_seconds: int = 30

    def __post_init__(self):
        if self.grace_seconds < 0:
            raise ValueError("grace_seconds must be >= 0")


@dataclass(frozen=True)
class FallbackConfig:
    """Whether the platform key is still tried after a hard error."""
    always_try_final_fallback: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "console"

    def __post_init__(self):
        if self.level.upper() not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid logging level: {self.level}")
        if self.format not in {"json", "console"}:
            raise ValueError("logging.format must be 'json' or 'console'")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    tokens: TokenConfig = field(default_factory=TokenConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    exam: ExamConfig = field(default_factory=ExamConfig)
    fallback: FallbackConfig = field(default_factory=FallbackConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Allowed keys per section, used for strict validation
_SECTION_KEYS = {
    "provider": {"model", "base_url", "api_key_env"},
    "tokens": {"subscription_grant", "voucher_grant", "subscription_days", "costs"},
    "ledger": {"max_retries"},
    "exam": {"grace_seconds"},
    "fallback": {"always_try_final_fallback"},
    "logging": {"level", "format"},
}


def default_config() -> AppConfig:
    """Configuration used when no file is supplied."""
    return AppConfig()


def load_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Every section is optional and falls back to its defaults, but unknown
    keys and wrongly typed values are rejected so a typo cannot silently
    disable a token cost or the fallback policy.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return default_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {name: _section(raw_config, name) for name in _SECTION_KEYS}

    provider = ProviderConfig(**_typed(sections["provider"], "provider", {
        "model": str, "base_url": (str, type(None)), "api_key_env": str,
    }))
    tokens_data = dict(sections["tokens"])
    costs = _parse_costs(tokens_data.pop("costs", {}))
    tokens = TokenConfig(costs=costs, **_typed(tokens_data, "tokens", {
        "subscription_grant": int, "voucher_grant": int, "subscription_days": int,
    }))
    ledger = LedgerConfig(**_typed(sections["ledger"], "ledger", {"max_retries": int}))
    exam = ExamConfig(**_typed(sections["exam"], "exam", {"grace_seconds": int}))
    fallback = FallbackConfig(**_typed(sections["fallback"], "fallback", {
        "always_try_final_fallback": bool,
    }))
    logging_config = LoggingConfig(**_typed(sections["logging"], "logging", {
        "level": str, "format": str,
    }))

    return AppConfig(
        provider=provider,
        tokens=tokens,
        ledger=ledger,
        exam=exam,
        fallback=fallback,
        logging=logging_config
    )


def _section(raw_config: Dict, name: str) -> Dict[str, Any]:
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown = set(data.keys()) - _SECTION_KEYS[name]
    if unknown:
        raise ValueError(f"Unknown keys in {name}: {unknown}")
    return data


def _typed(data: Dict[str, Any], path: str, types: Dict[str, Any]) -> Dict[str, Any]:
    """Check value types; bools are rejected where ints are expected."""
    for key, value in data.items():
        expected = types[key]
        if expected is int and isinstance(value, bool):
            raise ValueError(f"'{key}' in {path} must be an integer")
        if not isinstance(value, expected):
            raise ValueError(f"'{key}' in {path} has invalid type {type(value).__name__}")
    return data


def _parse_costs(data: Any) -> Dict[str, int]:
    """Merge configured feature costs over the defaults.

    Args:
        data: Mapping of feature name to token cost

    Returns:
        Complete feature cost table

    Raises:
        ValueError: If a feature is unknown or a cost is negative
    """
    if not isinstance(data, dict):
        raise ValueError("'tokens.costs' must be a dictionary")

    unknown = set(data.keys()) - set(FEATURES)
    if unknown:
        raise ValueError(f"Unknown features in tokens.costs: {unknown}")

    costs = dict(DEFAULT_FEATURE_COSTS)
    for feature, cost in data.items():
        if isinstance(cost, bool) or not isinstance(cost, int) or cost < 0:
            raise ValueError(f"Cost for '{feature}' must be an integer >= 0")
        costs[feature] = cost
    return costs
