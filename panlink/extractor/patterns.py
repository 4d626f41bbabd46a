"""
Provider pattern table.

Loads provider-type -> link pattern / credential rules from
config/providers.yaml (with local.yaml "providers" overrides). The extraction
code never hardcodes per-site knowledge: everything it needs about a provider
comes from a ProviderTable, which can also be built directly in tests.

Table order matters: when two provider patterns match overlapping text at the
same start and length, the rule listed first wins.
"""

from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from panlink.utils.config import get_config_dir, load_yaml_with_local_override
from panlink.utils.logging import get_logger
from panlink.utils.schemas import ProviderType

logger = get_logger(__name__)

DEFAULT_CREDENTIAL_PATTERN = r"[A-Za-z0-9]{4,8}"


def _validate_regex(v: str) -> str:
    try:
        re.compile(v)
    except re.error as e:
        raise ValueError(f"Invalid regex {v!r}: {e}") from e
    return v


# =============================================================================
# Pydantic Schema Models
# =============================================================================


class ProviderRuleSchema(BaseModel):
    """Schema for one provider entry."""

    type: ProviderType
    pattern: str = Field(..., description="Regex matching a share link of this provider")
    credential_pattern: str = Field(
        default=DEFAULT_CREDENTIAL_PATTERN,
        description="Regex an access code must fully match for this provider",
    )
    requires_hint: bool = Field(
        default=True,
        description="Whether free-text access codes may be associated with these links",
    )
    strip_trailing_slash: bool = Field(default=True)
    enabled: bool = Field(default=True)

    @field_validator("pattern", "credential_pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Ensure patterns compile."""
        if not v.strip():
            raise ValueError("Pattern cannot be empty")
        return _validate_regex(v)


class CredentialRuleSchema(BaseModel):
    """Schema for the access-code keyword rule."""

    keywords: list[str] = Field(
        default_factory=lambda: ["提取码", "提取密码", "访问码", "密码", "提取", "pwd", "password"]
    )
    separators: str = Field(
        default=" \t　:：=",
        description="Characters allowed between a keyword and its token",
    )
    token_charset: str = Field(default="A-Za-z0-9", description="Regex character-class body")
    min_length: int = Field(default=4, ge=1)
    max_length: int = Field(default=8, ge=1)
    context_keywords: list[str] = Field(
        default_factory=lambda: ["提取码", "密码", "访问码", "pwd", "password", "code"]
    )

    @field_validator("keywords")
    @classmethod
    def validate_keywords(cls, v: list[str]) -> list[str]:
        """Drop blanks; at least one keyword is required."""
        cleaned = [k.strip() for k in v if k.strip()]
        if not cleaned:
            raise ValueError("At least one credential keyword is required")
        return cleaned


class ProvidersConfigSchema(BaseModel):
    """Root schema for providers.yaml."""

    providers: list[ProviderRuleSchema] = Field(default_factory=list)
    credentials: CredentialRuleSchema = Field(default_factory=CredentialRuleSchema)
    credential_params: list[str] = Field(default_factory=lambda: ["pwd", "password", "passcode"])
    deny: list[ProviderType] = Field(default_factory=list)


# =============================================================================
# Compiled Table
# =============================================================================


@dataclass(frozen=True)
class ProviderRule:
    """Compiled provider entry for runtime use."""

    type: ProviderType
    regex: re.Pattern[str]
    credential_regex: re.Pattern[str]
    requires_hint: bool = True
    strip_trailing_slash: bool = True
    enabled: bool = True

    def accepts_credential(self, value: str) -> bool:
        """Check an access code against this provider's rule."""
        return self.credential_regex.fullmatch(value) is not None


@dataclass(frozen=True)
class CredentialRule:
    """Compiled access-code keyword rule."""

    keywords: tuple[str, ...]
    regex: re.Pattern[str]
    token_regex: re.Pattern[str]
    min_length: int
    max_length: int
    context_keywords: tuple[str, ...]

    @classmethod
    def from_schema(cls, schema: CredentialRuleSchema) -> CredentialRule:
        # Longest first so "提取码" wins over "提取" at the same offset
        keywords = tuple(sorted(set(schema.keywords), key=lambda k: (-len(k), k)))
        # ASCII keywords ("pwd") must not be the tail of a word ("mypwd");
        # CJK keywords may follow a link directly ("/s/1AbC提取码")
        alternation = "|".join(
            (r"(?<![A-Za-z0-9?&])" if k[0].isascii() else r"(?<![?&])") + re.escape(k)
            for k in keywords
        )
        charset = schema.token_charset
        regex = re.compile(
            rf"(?P<keyword>{alternation})"
            rf"[{re.escape(schema.separators)}]*"
            rf"(?P<token>[{charset}]*)",
            re.IGNORECASE,
        )
        return cls(
            keywords=keywords,
            regex=regex,
            token_regex=re.compile(rf"[{charset}]+"),
            min_length=schema.min_length,
            max_length=schema.max_length,
            context_keywords=tuple(k.lower() for k in schema.context_keywords),
        )

    def is_valid_token(self, token: str) -> bool:
        """Character class and length check."""
        return (
            self.min_length <= len(token) <= self.max_length
            and self.token_regex.fullmatch(token) is not None
        )


@dataclass(frozen=True)
class ProviderTable:
    """Injected provider knowledge used by extraction and association."""

    rules: tuple[ProviderRule, ...]
    credential_rule: CredentialRule
    credential_params: frozenset[str] = field(
        default_factory=lambda: frozenset({"pwd", "password", "passcode"})
    )
    deny: frozenset[ProviderType] = field(default_factory=frozenset)

    @classmethod
    def from_schema(cls, schema: ProvidersConfigSchema) -> ProviderTable:
        rules = tuple(
            ProviderRule(
                type=r.type,
                regex=re.compile(r.pattern, re.IGNORECASE),
                credential_regex=re.compile(r.credential_pattern),
                requires_hint=r.requires_hint,
                strip_trailing_slash=r.strip_trailing_slash,
                enabled=r.enabled,
            )
            for r in schema.providers
        )
        return cls(
            rules=rules,
            credential_rule=CredentialRule.from_schema(schema.credentials),
            credential_params=frozenset(p.lower() for p in schema.credential_params),
            deny=frozenset(schema.deny),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderTable:
        """Build a table from a providers.yaml-shaped dictionary."""
        return cls.from_schema(ProvidersConfigSchema(**data))

    def rule_for(self, provider: ProviderType) -> ProviderRule | None:
        """First rule declared for a provider type."""
        for rule in self.rules:
            if rule.type == provider:
                return rule
        return None

    def is_allowed(
        self,
        provider: ProviderType,
        extra_deny: frozenset[ProviderType] | set[ProviderType] = frozenset(),
    ) -> bool:
        """Check global and per-query deny lists."""
        return provider not in self.deny and provider not in extra_deny

    def provider_types(self) -> list[str]:
        return [rule.type.value for rule in self.rules]


def load_provider_table(config_dir: Path | None = None) -> ProviderTable:
    """Load providers.yaml (+ local.yaml overrides) into a ProviderTable.

    Args:
        config_dir: Configuration directory. Defaults to PANLINK_CONFIG_DIR.

    Returns:
        Compiled provider table. Empty when the file does not exist.
    """
    if config_dir is None:
        config_dir = get_config_dir()

    path = config_dir / "providers.yaml"
    if not path.exists():
        logger.warning("Provider table not found, using empty table", path=str(path))

    data = load_yaml_with_local_override(config_dir, "providers.yaml", "providers")
    table = ProviderTable.from_dict(data)
    logger.debug(
        "Provider table loaded",
        path=str(path),
        providers=table.provider_types(),
        deny=sorted(p.value for p in table.deny),
    )
    return table


# Global table instance
_provider_table: ProviderTable | None = None
_table_lock = threading.Lock()


def get_provider_table() -> ProviderTable:
    """Get the process-wide provider table (loaded on first use)."""
    global _provider_table
    if _provider_table is None:
        with _table_lock:
            if _provider_table is None:
                _provider_table = load_provider_table()
    return _provider_table


def reset_provider_table() -> None:
    """Reset the global provider table (for testing)."""
    global _provider_table
    with _table_lock:
        _provider_table = None
