"""
Configuration management and loading.

Handles application settings from YAML and provider credentials from the
environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ai_gen_guard.core.features import Feature, SubscriptionTier
from ai_gen_guard.core.orchestrator import DEFAULT_TIMEOUTS
from ai_gen_guard.core.quota import DEFAULT_TIER_LIMITS, UsageLimit

CONFIG_ENV_VAR = "AI_GEN_GUARD_CONFIG"

# provider name -> features it can serve
KNOWN_PROVIDERS = {
    "openai": {Feature.IMAGE_GENERATION, Feature.VOICE_SYNTHESIS, Feature.ADVANCED_EDITING},
    "elevenlabs": {Feature.VOICE_SYNTHESIS},
    "stability": {Feature.IMAGE_GENERATION},
    "d-id": {Feature.VIDEO_GENERATION},
}

DEFAULT_PROVIDERS = {
    Feature.IMAGE_GENERATION: ["openai", "stability"],
    Feature.VOICE_SYNTHESIS: ["openai", "elevenlabs"],
    Feature.VIDEO_GENERATION: ["d-id"],
    Feature.ADVANCED_EDITING: ["openai"],
}


@dataclass(frozen=True)
class DatabaseConfig:
    path: str = "ai_gen_guard.db"

    def __post_init__(self):
        if not self.path or not self.path.strip():
            raise ValueError("database path is required and cannot be empty")


@dataclass(frozen=True)
class StorageConfig:
    """Local blob storage root and optional public base URL."""
    root: str = "generated"
    base_url: Optional[str] = None

    def __post_init__(self):
        if not self.root or not self.root.strip():
            raise ValueError("storage root is required and cannot be empty")


@dataclass(frozen=True)
class CacheConfig:
    ttl_days: float = 7
    max_size_bytes: int = 1024 * 1024 * 1024
    eviction_fraction: float = 0.1

    def __post_init__(self):
        if self.ttl_days <= 0:
            raise ValueError("cache ttl_days must be > 0")
        if self.max_size_bytes <= 0:
            raise ValueError("cache max_size_bytes must be > 0")
        if not 0 < self.eviction_fraction <= 1:
            raise ValueError("cache eviction_fraction must be in (0, 1]")


@dataclass(frozen=True)
class QueueConfig:
    max_concurrent: int = 3
    poll_interval_seconds: float = 5.0

    def __post_init__(self):
        if self.max_concurrent <= 0:
            raise ValueError("queue max_concurrent must be > 0")
        if self.poll_interval_seconds <= 0:
            raise ValueError("queue poll_interval_seconds must be > 0")


@dataclass(frozen=True)
class BackgroundConfig:
    """Thresholds above which a request is deferred to the job queue."""
    image_pixel_threshold: int = 1024 * 1024
    voice_char_threshold: int = 500

    def __post_init__(self):
        if self.image_pixel_threshold <= 0:
            raise ValueError("background image_pixel_threshold must be > 0")
        if self.voice_char_threshold <= 0:
            raise ValueError("background voice_char_threshold must be > 0")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    providers: Dict[Feature, List[str]] = field(default_factory=lambda: {
        feature: list(names) for feature, names in DEFAULT_PROVIDERS.items()
    })
    tiers: Dict[SubscriptionTier, Dict[Feature, UsageLimit]] = field(default_factory=lambda: {
        tier: dict(limits) for tier, limits in DEFAULT_TIER_LIMITS.items()
    })
    cache: CacheConfig = field(default_factory=CacheConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    background: BackgroundConfig = field(default_factory=BackgroundConfig)
    timeouts: Dict[Feature, float] = field(default_factory=lambda: dict(DEFAULT_TIMEOUTS))
    rate_limit_per_minute: int = 10
    fallback_on_non_retryable: bool = True

    def __post_init__(self):
        if self.rate_limit_per_minute <= 0:
            raise ValueError("rate_limit_per_minute must be > 0")


@dataclass(frozen=True)
class ProviderCredentials:
    """Provider secrets read from the environment. Missing values are None."""
    openai_api_key: Optional[str] = None
    elevenlabs_api_key: Optional[str] = None
    elevenlabs_voice_id: Optional[str] = None
    stability_api_key: Optional[str] = None
    did_api_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ProviderCredentials":
        return cls(
            openai_api_key=os.environ.get("OPENAI_API_KEY") or None,
            elevenlabs_api_key=os.environ.get("ELEVENLABS_API_KEY") or None,
            elevenlabs_voice_id=os.environ.get("ELEVENLABS_VOICE_ID") or None,
            stability_api_key=os.environ.get("STABILITY_API_KEY") or None,
            did_api_key=os.environ.get("DID_API_KEY") or None,
        )

    def has_credentials(self, provider: str) -> bool:
        return {
            "openai": self.openai_api_key,
            "elevenlabs": self.elevenlabs_api_key,
            "stability": self.stability_api_key,
            "d-id": self.did_api_key,
        }.get(provider) is not None


def default_config() -> AppConfig:
    """Configuration used when no file is given."""
    return AppConfig()


def resolve_config_path(path: Optional[str] = None) -> Optional[str]:
    """Explicit path first, then the ``AI_GEN_GUARD_CONFIG`` environment variable."""
    return path or os.environ.get(CONFIG_ENV_VAR) or None


def load_config(path: str) -> AppConfig:
    """Load and validate application configuration from a YAML file.

    Every section is optional and falls back to its default. Unknown keys
    anywhere are rejected so typos never silently fall back to defaults.

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

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {
        'database', 'storage', 'providers', 'tiers', 'cache', 'queue',
        'background', 'timeouts', 'rate_limit_per_minute', 'fallback_on_non_retryable',
    }
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    defaults = default_config()
    kwargs: Dict[str, Any] = {}

    if 'database' in raw_config:
        data = _section(raw_config, 'database', {'path'})
        kwargs['database'] = DatabaseConfig(path=_string(data, 'path', 'database', defaults.database.path))

    if 'storage' in raw_config:
        data = _section(raw_config, 'storage', {'root', 'base_url'})
        base_url = data.get('base_url')
        if base_url is not None and not isinstance(base_url, str):
            raise ValueError("'base_url' in storage must be a string")
        kwargs['storage'] = StorageConfig(
            root=_string(data, 'root', 'storage', defaults.storage.root),
            base_url=base_url,
        )

    if 'providers' in raw_config:
        kwargs['providers'] = _parse_providers(raw_config['providers'], defaults.providers)

    if 'tiers' in raw_config:
        kwargs['tiers'] = _parse_tiers(raw_config['tiers'], defaults.tiers)

    if 'cache' in raw_config:
        data = _section(raw_config, 'cache', {'ttl_days', 'max_size_bytes', 'eviction_fraction'})
        kwargs['cache'] = CacheConfig(
            ttl_days=_number(data, 'ttl_days', 'cache', defaults.cache.ttl_days),
            max_size_bytes=_integer(data, 'max_size_bytes', 'cache', defaults.cache.max_size_bytes),
            eviction_fraction=_number(data, 'eviction_fraction', 'cache', defaults.cache.eviction_fraction),
        )

    if 'queue' in raw_config:
        data = _section(raw_config, 'queue', {'max_concurrent', 'poll_interval_seconds'})
        kwargs['queue'] = QueueConfig(
            max_concurrent=_integer(data, 'max_concurrent', 'queue', defaults.queue.max_concurrent),
            poll_interval_seconds=_number(
                data, 'poll_interval_seconds', 'queue', defaults.queue.poll_interval_seconds
            ),
        )

    if 'background' in raw_config:
        data = _section(raw_config, 'background', {'image_pixel_threshold', 'voice_char_threshold'})
        kwargs['background'] = BackgroundConfig(
            image_pixel_threshold=_integer(
                data, 'image_pixel_threshold', 'background', defaults.background.image_pixel_threshold
            ),
            voice_char_threshold=_integer(
                data, 'voice_char_threshold', 'background', defaults.background.voice_char_threshold
            ),
        )

    if 'timeouts' in raw_config:
        data = _section(raw_config, 'timeouts', {feature.value for feature in Feature})
        timeouts = dict(defaults.timeouts)
        for name in data:
            value = _number(data, name, 'timeouts', 0)
            if value <= 0:
                raise ValueError(f"'{name}' in timeouts must be > 0")
            timeouts[Feature(name)] = float(value)
        kwargs['timeouts'] = timeouts

    if 'rate_limit_per_minute' in raw_config:
        kwargs['rate_limit_per_minute'] = _integer(raw_config, 'rate_limit_per_minute', 'configuration', 0)

    if 'fallback_on_non_retryable' in raw_config:
        value = raw_config['fallback_on_non_retryable']
        if not isinstance(value, bool):
            raise ValueError("'fallback_on_non_retryable' must be true or false")
        kwargs['fallback_on_non_retryable'] = value

    return AppConfig(**kwargs)


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    data = raw_config[name]
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _string(data: Dict, key: str, path: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value


def _number(data: Dict, key: str, path: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _integer(data: Dict, key: str, path: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' in {path} must be an integer")
    return value


def _feature(name: Any, path: str) -> Feature:
    try:
        return Feature(name)
    except ValueError:
        valid = [feature.value for feature in Feature]
        raise ValueError(f"Unknown feature '{name}' in {path}, must be one of: {valid}")


def _parse_providers(data: Any, defaults: Dict[Feature, List[str]]) -> Dict[Feature, List[str]]:
    """Parse per-feature provider order. Features not listed keep their defaults.

    Raises:
        ValueError: If a provider is unknown, duplicated, or cannot serve the feature
    """
    if not isinstance(data, dict):
        raise ValueError("'providers' must be a dictionary")

    providers = {feature: list(names) for feature, names in defaults.items()}
    for feature_name, names in data.items():
        feature = _feature(feature_name, 'providers')
        if not isinstance(names, list) or not all(isinstance(n, str) for n in names):
            raise ValueError(f"providers.{feature_name} must be a list of provider names")
        if len(set(names)) != len(names):
            raise ValueError(f"providers.{feature_name} lists a provider more than once")
        for name in names:
            if name not in KNOWN_PROVIDERS:
                raise ValueError(
                    f"Unknown provider '{name}' in providers.{feature_name}, "
                    f"must be one of: {sorted(KNOWN_PROVIDERS)}"
                )
            if feature not in KNOWN_PROVIDERS[name]:
                raise ValueError(f"Provider '{name}' does not support {feature.value}")
        providers[feature] = list(names)
    return providers


def _parse_tiers(
    data: Any,
    defaults: Dict[SubscriptionTier, Dict[Feature, UsageLimit]],
) -> Dict[SubscriptionTier, Dict[Feature, UsageLimit]]:
    """Parse tier limit overrides on top of the default table.

    Each overridden tier/feature entry must give all four limits.

    Raises:
        ValueError: If a tier, feature or limit is invalid
    """
    if not isinstance(data, dict):
        raise ValueError("'tiers' must be a dictionary")

    tiers = {tier: dict(limits) for tier, limits in defaults.items()}
    limit_keys = {'monthly', 'daily', 'per_request', 'monthly_cost_cents'}
    for tier_name, features in data.items():
        try:
            tier = SubscriptionTier(tier_name)
        except ValueError:
            valid = [t.value for t in SubscriptionTier]
            raise ValueError(f"Unknown tier '{tier_name}', must be one of: {valid}")
        if not isinstance(features, dict):
            raise ValueError(f"tiers.{tier_name} must be a dictionary")

        for feature_name, limits in features.items():
            path = f"tiers.{tier_name}.{feature_name}"
            feature = _feature(feature_name, f"tiers.{tier_name}")
            if not isinstance(limits, dict):
                raise ValueError(f"{path} must be a dictionary")
            unknown_keys = set(limits.keys()) - limit_keys
            if unknown_keys:
                raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
            missing = limit_keys - set(limits.keys())
            if missing:
                raise ValueError(f"Missing required keys in {path}: {sorted(missing)}")
            try:
                tiers[tier][feature] = UsageLimit(**limits)
            except ValueError as e:
                raise ValueError(f"Invalid limits in {path}: {e}")
    return tiers
