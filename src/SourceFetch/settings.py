# === NAVMAP v1 ===
# {
#   "module": "SourceFetch.settings",
#   "purpose": "Typed request and settings models for source fetching",
#   "sections": [
#     {"id": "kinds", "name": "SourceKind", "anchor": "KND", "kind": "api"},
#     {"id": "request", "name": "FetchRequest", "anchor": "REQ", "kind": "api"},
#     {"id": "domains", "name": "Domain Settings Models", "anchor": "DOM", "kind": "api"},
#     {"id": "root", "name": "SourceFetchSettings", "anchor": "ROOT", "kind": "api"},
#     {"id": "cache", "name": "Default Config Cache", "anchor": "CCH", "kind": "helpers"}
#   ]
# }
# === /NAVMAP ===

"""Typed request and settings models for source fetching.

The fetcher never reads process-wide globals: a :class:`FetchRequest`
describes *what* to fetch and is threaded explicitly through the pipeline,
while :class:`SourceFetchSettings` describes *how* (timeouts, the port-forward
binary, the custom resource coordinates, logging).  Settings are read from
``SOURCEFETCH_`` prefixed environment variables using ``pydantic-settings``;
nested fields use ``__`` as delimiter, e.g. ``SOURCEFETCH_HTTP__TIMEOUT=30``.
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

__all__ = [
    "SourceKind",
    "FetchRequest",
    "HttpSettings",
    "TunnelSettings",
    "ClusterSettings",
    "StagingSettings",
    "LoggingSettings",
    "SourceFetchSettings",
    "build_request",
    "get_default_config",
    "invalidate_default_config",
]


# ============================================================================
# Source kinds
# ============================================================================


class SourceKind(str, Enum):
    """Category of staged artifact served by the source controller."""

    GIT_REPOSITORY = "gitrepository"
    HELM_CHART = "helmchart"

    @classmethod
    def parse(cls, value: "SourceKind | str") -> "SourceKind":
        """Return the kind named by ``value``, accepting short aliases.

        Raises:
            ConfigurationError: If ``value`` names no supported kind.
        """
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        kind = _KIND_ALIASES.get(key)
        if kind is None:
            allowed = ", ".join(member.value for member in cls)
            raise ConfigurationError(
                f"--source-type {str(value)!r} not allowed, must be one of: {allowed}"
            )
        return kind


_KIND_ALIASES = {
    "gitrepository": SourceKind.GIT_REPOSITORY,
    "repository": SourceKind.GIT_REPOSITORY,
    "git": SourceKind.GIT_REPOSITORY,
    "helmchart": SourceKind.HELM_CHART,
    "chart": SourceKind.HELM_CHART,
    "helm": SourceKind.HELM_CHART,
}


# ============================================================================
# Fetch request
# ============================================================================


class FetchRequest(BaseModel):
    """Immutable description of a single fetch invocation."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_kind: SourceKind = Field(
        default=SourceKind.GIT_REPOSITORY,
        description="Kind of source artifact to fetch",
    )
    namespace: str = Field(default="flux-system", min_length=1, description="Source namespace")
    name: str = Field(min_length=1, description="Source name")
    revision: str = Field(
        default="latest",
        min_length=1,
        description="Opaque source revision, used verbatim as a path segment",
    )
    local_port: int = Field(default=8080, ge=1, le=65535, description="Local tunnel port")
    service_name: str = Field(default="source-controller", min_length=1)
    service_namespace: str = Field(default="flux-system", min_length=1)
    service_port: int = Field(default=80, ge=1, le=65535, description="Remote service port")

    @field_validator("source_kind", mode="before")
    @classmethod
    def parse_source_kind(cls, v: Any) -> SourceKind:
        """Accept kind aliases such as ``repository`` and ``chart``."""
        try:
            return SourceKind.parse(v)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc

    @field_validator("namespace", "name", "revision", "service_name", "service_namespace")
    @classmethod
    def reject_blank(cls, v: str) -> str:
        """Strip whitespace and reject blank identifiers."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


def build_request(**fields: Any) -> FetchRequest:
    """Construct a :class:`FetchRequest`, raising :class:`ConfigurationError` on bad input.

    Examples:
        >>> build_request(name="demo").source_kind
        <SourceKind.GIT_REPOSITORY: 'gitrepository'>
    """
    kind = fields.get("source_kind")
    if kind is not None:
        fields["source_kind"] = SourceKind.parse(kind)
    try:
        return FetchRequest(**fields)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigurationError(f"Invalid fetch request: {problems}") from exc


# ============================================================================
# Domain settings
# ============================================================================


class HttpSettings(BaseModel):
    """HTTP client settings for the artifact download."""

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(
        default=15.0,
        gt=0.0,
        le=600.0,
        description="Hard client-side timeout for the download in seconds",
    )
    trust_env: bool = Field(
        default=False,
        description="Honor HTTP(S)_PROXY variables; off because the target is always localhost",
    )
    user_agent: str = Field(default="sourcefetch", min_length=1)


class TunnelSettings(BaseModel):
    """Settings for the ``kubectl port-forward`` subprocess."""

    model_config = ConfigDict(frozen=True)

    binary: str = Field(default="kubectl", min_length=1, description="Port-forward executable")
    settle_delay: float = Field(
        default=0.0,
        ge=0.0,
        le=60.0,
        description="Fixed delay before probing the local port",
    )
    ready_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Maximum time to wait for the local port to accept connections",
    )
    poll_interval: float = Field(default=0.25, gt=0.0, le=10.0)
    stop_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Grace period after signalling before the subprocess is killed",
    )


class ClusterSettings(BaseModel):
    """Coordinates of the custom resource publishing chart artifact URLs."""

    model_config = ConfigDict(frozen=True)

    group: str = Field(default="source.toolkit.fluxcd.io", min_length=1)
    version: str = Field(default="v1beta1", min_length=1)
    plural: str = Field(default="helmcharts", min_length=1)
    kubeconfig: Optional[Path] = Field(default=None, description="Explicit kubeconfig path")
    context: Optional[str] = Field(default=None, description="Kubeconfig context to use")


class StagingSettings(BaseModel):
    """Where staging directories are created."""

    model_config = ConfigDict(frozen=True)

    root: Optional[Path] = Field(
        default=None,
        description="Parent directory for staging directories (system temp dir when unset)",
    )


class LoggingSettings(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    log_file: Optional[Path] = Field(
        default=None,
        description="Optional JSON-lines log file",
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize and validate logging level."""
        upper = str(v).upper()
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {sorted(valid_levels)}, got '{v}'")
        return upper

    def level_int(self) -> int:
        """Convert level string to logging module integer."""
        return getattr(logging, self.level)


# ============================================================================
# Root settings
# ============================================================================


class SourceFetchSettings(BaseSettings):
    """Root settings model, populated from ``SOURCEFETCH_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SOURCEFETCH_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    http: HttpSettings = Field(default_factory=HttpSettings)
    tunnel: TunnelSettings = Field(default_factory=TunnelSettings)
    cluster: ClusterSettings = Field(default_factory=ClusterSettings)
    staging: StagingSettings = Field(default_factory=StagingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ============================================================================
# Default config cache
# ============================================================================

_DEFAULT_CONFIG_CACHE: Optional[SourceFetchSettings] = None
_DEFAULT_CONFIG_LOCK = threading.Lock()


def get_default_config() -> SourceFetchSettings:
    """Return the process-wide settings instance, loading it on first use."""

    global _DEFAULT_CONFIG_CACHE  # noqa: PLW0603

    with _DEFAULT_CONFIG_LOCK:
        if _DEFAULT_CONFIG_CACHE is None:
            try:
                _DEFAULT_CONFIG_CACHE = SourceFetchSettings()
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid SOURCEFETCH_ settings: {exc}") from exc
        return _DEFAULT_CONFIG_CACHE


def invalidate_default_config() -> None:
    """Invalidate the cached default configuration."""

    global _DEFAULT_CONFIG_CACHE  # noqa: PLW0603

    with _DEFAULT_CONFIG_LOCK:
        _DEFAULT_CONFIG_CACHE = None
