"""Pydantic configuration models with validation."""

from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import (
    AliasChoices,
    AliasPath,
    BaseModel,
    Field,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["dev", "test", "prod"]
LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console"]
EngineKindName = Literal["builtin", "custom"]
ParsingModeName = Literal["structured", "html-extraction-required"]
SortName = Literal["score", "size", "arrival"]

DEFAULT_AI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/openai"


class EngineConfig(BaseModel):
    """One search engine definition (YAML list entry under ``engines``)."""

    id: str = Field(description="Stable engine identifier.")
    name: str = Field(default="", description="Display name.")
    kind: EngineKindName = Field(default="custom")
    parsing_mode: ParsingModeName = Field(default="html-extraction-required")
    url_template: Optional[str] = Field(
        default=None,
        description="Search URL with {keyword} and optional {page} placeholders.",
    )
    base_url: Optional[str] = Field(
        default=None,
        description="Base URL override for built-in engines.",
    )
    enabled: bool = Field(default=True)

    @field_validator("id")
    @classmethod
    def _validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("engine id must not be empty")
        return v

    @model_validator(mode="after")
    def _validate_template(self) -> "EngineConfig":
        if self.kind == "custom":
            if not self.url_template or "{keyword}" not in self.url_template:
                raise ValueError(
                    f"custom engine {self.id!r} needs a url_template with {{keyword}}"
                )
        if not self.name:
            self.name = self.id
        return self


class SearchConfig(BaseModel):
    """Search run behaviour (YAML section: search.*)."""

    default_max_pages: int = Field(
        default=3, description="Pages fetched per engine when a query sets none."
    )
    max_concurrent_engines: int = Field(
        default=5, description="Engine fetch slots shared by all runs."
    )
    engine_timeout_seconds: float = Field(
        default=45.0, description="Timeout for one engine fetch attempt (all pages)."
    )
    fetch_max_attempts: int = Field(default=3)
    fetch_backoff_seconds: float = Field(default=0.5)
    fetch_max_backoff_seconds: float = Field(default=10.0)
    ai_filter: bool = Field(default=True, description="Default for SearchQuery.")
    require_keyword_in_title: bool = Field(default=False)
    priority_keywords: list[str] = Field(
        default_factory=list,
        description="Titles containing one of these are analyzed first.",
    )
    sort: SortName = Field(default="score", description="Snapshot sort order.")

    @field_validator("default_max_pages", "max_concurrent_engines", "fetch_max_attempts")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @field_validator("engine_timeout_seconds")
    @classmethod
    def _validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("engine_timeout_seconds must be > 0")
        return v


class AiEndpointConfig(BaseModel):
    """OpenAI-compatible chat-completions endpoint.

    The endpoint is disabled while ``api_key`` is unset.
    """

    provider: str = Field(default="gemini")
    api_base: str = Field(default=DEFAULT_AI_API_BASE)
    api_key: Optional[str] = Field(default=None)
    model: str = Field(default="gemini-2.0-flash")
    timeout_seconds: float = Field(default=60.0)
    max_attempts: int = Field(default=3)
    backoff_seconds: float = Field(default=1.0)
    max_backoff_seconds: float = Field(default=20.0)
    requests_per_second: float = Field(
        default=2.0, description="Adaptive throttle start rate. 0 = unlimited."
    )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    @field_validator("api_base")
    @classmethod
    def _strip_base(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("max_attempts")
    @classmethod
    def _validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v


class ExtractionConfig(AiEndpointConfig):
    """Structured extraction of records from HTML (YAML section: extraction.*)."""

    max_html_chars: int = Field(
        default=50_000, description="HTML is truncated to this many characters."
    )
    preview_chars: int = Field(
        default=200, description="Length of the content preview in failure logs."
    )
    heuristic_fallback: bool = Field(
        default=True,
        description="Try the local HTML parser when extraction finds nothing.",
    )


class AnalysisConfig(AiEndpointConfig):
    """Batched content analysis (YAML section: analysis.*)."""

    max_attempts: int = Field(default=2)
    batch_size: int = Field(default=10)
    max_concurrent_batches: int = Field(default=2)
    max_failed_batches: int = Field(
        default=3, description="Skip per-record fallback after this many. 0 = never."
    )
    max_files_per_item: int = Field(
        default=20, description="File names sent along with each title."
    )

    @field_validator("batch_size", "max_concurrent_batches")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v


def _default_engines() -> list[EngineConfig]:
    return [
        EngineConfig(
            id="clmclm",
            name="CLMCLM",
            kind="builtin",
            parsing_mode="structured",
        )
    ]


class AppConfig(BaseModel):
    """
    Canonical application configuration (validated, final).

    Note:
    - YAML is expected to be sectioned (http/logging/search/extraction/analysis/engines).
    - Environment variables are handled by EnvOverrides(BaseSettings) to allow strict
      precedence control (defaults < YAML < ENV < CLI) in load.py.
    """

    # General
    app_name: str = Field(default="magnetopt", description="Application name.")
    environment: Environment = Field(
        default="dev",
        description="Runtime environment (affects defaults like log format).",
    )

    # HTTP (YAML section: http.*)
    http_timeout_seconds: float = Field(
        default=20.0,
        validation_alias=AliasChoices(
            "http_timeout_seconds",
            AliasPath("http", "timeout_seconds"),
        ),
        description="HTTP timeout in seconds for engine page fetches.",
    )
    http_follow_redirects: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "http_follow_redirects",
            AliasPath("http", "follow_redirects"),
        ),
        description="Whether HTTP client follows redirects.",
    )
    http_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
        ),
        validation_alias=AliasChoices(
            "http_user_agent",
            AliasPath("http", "user_agent"),
        ),
        description="User-Agent for outgoing HTTP requests.",
    )

    # Logging (YAML section: logging.*)
    log_level: LogLevel = Field(
        default="INFO",
        validation_alias=AliasChoices(
            "log_level",
            AliasPath("logging", "level"),
        ),
        description="Log level.",
    )
    log_format: Optional[LogFormat] = Field(
        default=None,
        validation_alias=AliasChoices(
            "log_format",
            AliasPath("logging", "format"),
        ),
        description=(
            "Log renderer format (console/json). If unset, derived from environment."
        ),
    )

    search: SearchConfig = Field(default_factory=SearchConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    engines: list[EngineConfig] = Field(default_factory=_default_engines)

    @field_validator("http_timeout_seconds")
    @classmethod
    def _validate_http_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("http_timeout_seconds must be > 0")
        return v

    @field_validator("engines")
    @classmethod
    def _validate_unique_engines(cls, v: list[EngineConfig]) -> list[EngineConfig]:
        seen: set[str] = set()
        for engine in v:
            if engine.id in seen:
                raise ValueError(f"duplicate engine id: {engine.id!r}")
            seen.add(engine.id)
        return v

    @model_validator(mode="after")
    def _derive_defaults(self) -> "AppConfig":
        # Default log format: console in dev/test, json in prod.
        if self.log_format is None:
            self.log_format = "json" if self.environment == "prod" else "console"
        return self

    @property
    def enabled_engines(self) -> list[EngineConfig]:
        return [e for e in self.engines if e.enabled]

    def to_sectioned_dict(self) -> dict[str, Any]:
        """
        Dump configuration in the sectioned shape used by config.yaml/docs.

        API keys are masked.
        """
        extraction = self.extraction.model_dump()
        analysis = self.analysis.model_dump()
        for section in (extraction, analysis):
            if section.get("api_key"):
                section["api_key"] = "***"
        return {
            "app_name": self.app_name,
            "environment": self.environment,
            "http": {
                "timeout_seconds": self.http_timeout_seconds,
                "follow_redirects": self.http_follow_redirects,
                "user_agent": self.http_user_agent,
            },
            "logging": {"level": self.log_level, "format": self.log_format},
            "search": self.search.model_dump(),
            "extraction": extraction,
            "analysis": analysis,
            "engines": [e.model_dump() for e in self.engines],
        }


class EnvOverrides(BaseSettings):
    """
    Environment-variable overrides (all optional).

    Intended usage:
    - load.py creates EnvOverrides() to read MAGNETOPT_* variables,
      converts to dict of set values, merges into YAML/defaults,
      then validates AppConfig.

    Supported env var examples (flat, explicit):
    - MAGNETOPT_HTTP_TIMEOUT_SECONDS
    - MAGNETOPT_LOG_LEVEL
    - MAGNETOPT_EXTRACTION_API_KEY
    - MAGNETOPT_ANALYSIS_MODEL
    """

    model_config = SettingsConfigDict(
        env_prefix="MAGNETOPT_",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: Optional[str] = None
    environment: Optional[Environment] = None

    http_timeout_seconds: Optional[float] = None
    http_follow_redirects: Optional[bool] = None
    http_user_agent: Optional[str] = None

    log_level: Optional[LogLevel] = None
    log_format: Optional[LogFormat] = None

    search_max_concurrent_engines: Optional[int] = None
    search_engine_timeout_seconds: Optional[float] = None
    search_ai_filter: Optional[bool] = None

    extraction_api_base: Optional[str] = None
    extraction_api_key: Optional[str] = None
    extraction_model: Optional[str] = None

    analysis_api_base: Optional[str] = None
    analysis_api_key: Optional[str] = None
    analysis_model: Optional[str] = None
    analysis_batch_size: Optional[int] = None

    def to_update_dict(self) -> dict[str, Any]:
        """
        Return only values that were actually provided (non-None), for merging.
        """
        return self.model_dump(exclude_none=True)
