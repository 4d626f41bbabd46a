"""
Configuration management for panlink.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "panlink"
    version: str = "0.1.0"
    log_level: str = "INFO"
    logs_dir: str = "logs"
    log_to_file: bool = False


class FetcherConfig(BaseModel):
    """HTTP fetch and retry configuration.

    Attributes:
        max_attempts: Total attempts per request (first try included).
        base_delay_seconds: Delay before the first retry.
        max_delay_seconds: Upper bound of a single retry delay.
        timeout_seconds: Per-request timeout.
        user_agent: Default User-Agent header.
    """

    model_config = ConfigDict(extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_seconds: float = Field(default=0.5, ge=0.0)
    max_delay_seconds: float = Field(default=8.0, ge=0.0)
    timeout_seconds: float = Field(default=10.0, gt=0.0)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )


class ConcurrencyConfig(BaseModel):
    """Adaptive concurrency limiter configuration.

    The limit starts at ``initial`` and moves by ``step`` inside
    ``[min_limit, max_limit]`` every ``adjust_interval_seconds``.
    """

    model_config = ConfigDict(extra="forbid")

    min_limit: int = Field(default=2, ge=1)
    max_limit: int = Field(default=20, ge=1)
    initial: int = Field(default=10, ge=1)
    step: int = Field(default=2, ge=1)
    latency_threshold_seconds: float = Field(default=3.0, gt=0.0)
    adjust_interval_seconds: float = Field(default=5.0, gt=0.0)
    sample_window: int = Field(default=200, ge=1)

    @model_validator(mode="after")
    def validate_bounds(self) -> "ConcurrencyConfig":
        """Ensure min <= initial <= max."""
        if self.min_limit > self.max_limit:
            raise ValueError(
                f"min_limit ({self.min_limit}) must be <= max_limit ({self.max_limit})"
            )
        if not self.min_limit <= self.initial <= self.max_limit:
            raise ValueError(
                f"initial ({self.initial}) must lie within "
                f"[{self.min_limit}, {self.max_limit}]"
            )
        return self


class CacheConfig(BaseModel):
    """Result cache configuration."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    ttl_seconds: float = Field(default=3600.0, gt=0.0)
    clear_interval_seconds: float = Field(default=3600.0, gt=0.0)


class AssociationConfig(BaseModel):
    """Link/credential association scoring weights."""

    model_config = ConfigDict(extra="forbid")

    base: int = 200
    proximity_bonus: int = 50
    near_threshold: int = 50
    context_bonus: int = 30
    context_window: int = Field(default=16, ge=0)
    boundary_penalty: int = 300


class SearchConfig(BaseModel):
    """Search orchestration configuration."""

    model_config = ConfigDict(extra="forbid")

    default_pages: int = Field(default=1, ge=1, le=20)
    batch_deadline_seconds: float = Field(default=30.0, gt=0.0)
    result_limit: int = Field(default=200, ge=1)
    filter_by_keyword: bool = True


class SourceConfig(BaseModel):
    """One upstream search source.

    ``url_template`` (and ``body_template`` for POST) may reference
    ``{keyword}`` and ``{page}``. HTML sources read entries with CSS selectors,
    JSON sources with dotted field paths; ``link_field``/``password_field``
    map a share link reported as structured fields.
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    kind: Literal["html", "json"] = "html"
    enabled: bool = True
    url_template: str
    method: Literal["GET", "POST"] = "GET"
    body_template: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    first_page: int = 1
    page_step: int = 1

    # HTML sources
    item_selector: str | None = None
    title_selector: str | None = None
    content_selector: str | None = None
    timestamp_selector: str | None = None
    timestamp_attribute: str | None = None
    id_attribute: str | None = None

    # JSON sources
    items_path: str | None = None
    id_field: str | None = None
    title_field: str = "title"
    content_field: str = "content"
    timestamp_field: str | None = None
    link_field: str | None = None
    password_field: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names are lower-case identifiers."""
        v = v.strip().lower()
        if not v:
            raise ValueError("Source name cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_source(self) -> "SourceConfig":
        """Check the keyword placeholder and per-kind requirements."""
        if "{keyword}" not in self.url_template and "{keyword}" not in (self.body_template or ""):
            raise ValueError(
                f"Source '{self.name}' must use '{{keyword}}' in url_template or body_template"
            )
        if self.kind == "html" and not self.item_selector:
            raise ValueError(f"HTML source '{self.name}' requires item_selector")
        return self


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    association: AssociationConfig = Field(default_factory=AssociationConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    sources: list[SourceConfig] = Field(default_factory=list)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Override dictionary.

    Returns:
        Merged dictionary.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Cache for local.yaml content, keyed by config directory
_local_overrides_cache: dict[Path, dict[str, Any]] = {}


def _load_local_overrides(config_dir: Path) -> dict[str, Any]:
    """Load local.yaml overrides (cached per directory).

    Top-level keys correspond to config file names (without .yaml extension).

    Example local.yaml:
        settings:
          cache:
            ttl_seconds: 600
        providers:
          deny: [others]

    Args:
        config_dir: Configuration directory path.

    Returns:
        Local overrides dictionary.
    """
    cached = _local_overrides_cache.get(config_dir)
    if cached is not None:
        return cached

    local_path = config_dir / "local.yaml"
    overrides: dict[str, Any] = {}
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}

    _local_overrides_cache[config_dir] = overrides
    return overrides


def load_yaml_with_local_override(
    config_dir: Path,
    filename: str,
    section_key: str | None = None,
) -> dict[str, Any]:
    """Load a YAML file with local.yaml override support.

    Args:
        config_dir: Configuration directory path.
        filename: YAML filename (e.g., "settings.yaml").
        section_key: Key in local.yaml for overrides.
                     Defaults to filename without extension.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    base_path = config_dir / filename
    if base_path.exists():
        with open(base_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_overrides = _load_local_overrides(config_dir)
    if section_key is None:
        section_key = Path(filename).stem

    if section_key in local_overrides:
        config = _deep_merge(config, local_overrides[section_key])

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with PANLINK_ and use
    double underscores for nested keys.

    Example:
        PANLINK_CACHE__TTL_SECONDS=600

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "PANLINK_"

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key == "PANLINK_CONFIG_DIR":
            continue

        key_path = key[len(prefix) :].lower().split("__")
        if len(key_path) < 2:
            # Only section-scoped keys are settings
            continue

        current = config
        for part in key_path[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]
            if not isinstance(current, dict):
                # Lists (e.g. sources) are not addressable from the environment
                break
        if not isinstance(current, dict):
            continue

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


def get_config_dir() -> Path:
    """Get the configuration directory.

    PANLINK_CONFIG_DIR when set, otherwise the repository config/ directory
    (independent of the working directory).
    """
    configured = os.environ.get("PANLINK_CONFIG_DIR")
    if configured:
        return Path(configured)
    return get_project_root() / "config"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. config/settings.yaml (+ local.yaml "settings" section)
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config = load_yaml_with_local_override(get_config_dir(), "settings.yaml", "settings")
    config = _apply_env_overrides(config)
    return Settings(**config)


def reset_settings() -> None:
    """Drop cached settings and local overrides (for testing)."""
    get_settings.cache_clear()
    _local_overrides_cache.clear()


def get_project_root() -> Path:
    """Get the project root directory.

    Returns:
        Project root path.
    """
    # This file is at panlink/utils/config.py
    return Path(__file__).parent.parent.parent
