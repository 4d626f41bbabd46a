"""
Data models shared across the panlink pipeline.

Positioned candidates and raw documents are plain dataclasses; they only live
inside one document's processing. Everything that crosses the cache or the
public API is a pydantic model.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class ProviderType(str, Enum):
    """Cloud-storage service a share link belongs to."""

    BAIDU = "baidu"
    QUARK = "quark"
    ALIYUN = "aliyun"
    TIANYI = "tianyi"
    UC = "uc"
    MOBILE = "mobile"
    PAN115 = "115"
    PAN123 = "123"
    PIKPAK = "pikpak"
    XUNLEI = "xunlei"
    LANZOU = "lanzou"
    WEIYUN = "weiyun"
    MAGNET = "magnet"
    ED2K = "ed2k"
    OTHERS = "others"


LinkOrigin = Literal["inline", "associated", "none"]


# =============================================================================
# Pipeline-internal types
# =============================================================================


@dataclass(frozen=True)
class RawDocument:
    """A fetched document, discarded after extraction."""

    source: str
    url: str
    text: str
    fetched_at: datetime
    status: int = 200


@dataclass(frozen=True)
class EntryLink:
    """A share link a source reports as a structured field, with its access code."""

    url: str
    password: str | None = None


@dataclass(frozen=True)
class DocumentEntry:
    """One logical item read out of a document by a source adapter."""

    title: str
    content: str
    text: str
    timestamp: datetime | None = None
    ref: str | None = None
    links: tuple[EntryLink, ...] = ()


@dataclass(frozen=True)
class CandidateLink:
    """A share link found in text, with its [start, end) offsets."""

    provider: ProviderType
    url: str
    start: int
    end: int
    inline_password: str | None = None


@dataclass(frozen=True)
class CandidateCredential:
    """An access code found in text.

    The span covers the trigger keyword through the end of the token.
    """

    value: str
    start: int
    end: int
    keyword: str


# =============================================================================
# Result types
# =============================================================================


class LinkRecord(BaseModel):
    """A resolved share link."""

    url: str = Field(..., description="Canonical URL")
    type: ProviderType = Field(..., description="Provider type")
    password: str = Field(default="", description="Access code, empty if none")
    origin: LinkOrigin = Field(default="none", description="Where the password came from")


class ResourceResult(BaseModel):
    """A logical search hit."""

    id: str
    title: str
    content: str = ""
    timestamp: datetime | None = None
    source: str = ""
    links: list[LinkRecord] = Field(default_factory=list)


class TaskFailure(BaseModel):
    """Diagnostic record of one failed fetch+extract task."""

    source: str
    url: str
    error_code: str
    error: str


class SearchOptions(BaseModel):
    """Per-query options.

    Attributes:
        pages: Pages to request per source (None = settings default).
        sources: Source names to query (None = all enabled sources).
        enabled_providers: Keep only these provider types (None = all).
        disabled_providers: Drop these provider types at extraction time.
        limit: Maximum results returned (None = settings default).
        filter_by_keyword: Keep only results mentioning every keyword term.
        force_refresh: Ignore cached results.
    """

    pages: int | None = Field(default=None, ge=1, le=20)
    sources: list[str] | None = None
    enabled_providers: list[ProviderType] | None = None
    disabled_providers: list[ProviderType] = Field(default_factory=list)
    limit: int | None = Field(default=None, ge=1)
    filter_by_keyword: bool | None = None
    force_refresh: bool = False


class MergedLink(BaseModel):
    """A link grouped under its provider type, with the result it came from."""

    url: str
    password: str = ""
    note: str = ""
    timestamp: datetime | None = None
    source: str = ""


class SearchResponse(BaseModel):
    """Outcome of one search call."""

    total: int = 0
    results: list[ResourceResult] = Field(default_factory=list)
    merged_by_type: dict[str, list[MergedLink]] = Field(default_factory=dict)
    errors: list[TaskFailure] = Field(default_factory=list)
    timed_out: bool = False
    from_cache: bool = False
