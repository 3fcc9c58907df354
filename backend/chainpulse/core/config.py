from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SECTION_CHAR_BUDGETS: dict[str, int] = {
    "dex": 120_000,
    "lending": 15_000,
    "nft": 20_000,
    "derivatives": 20_000,
    "cross": 5_000,
}

DEFAULT_DERIVATIVES_ENTITY_SHARES: dict[str, float] = {
    "swap": 0.35,
    "positionSnapshot": 0.60,
    "liquidation": 0.025,
    "position": 0.025,
}

DEFAULT_NFT_ENTITY_SHARES: dict[str, float] = {
    "project": 0.10,
    "transfer": 0.40,
    "token": 0.25,
    "mint": 0.25,
}

MIN_LIMIT_PER_PROTOCOL = 50
MAX_LIMIT_PER_PROTOCOL = 12_000


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme != "postgresql+psycopg":
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("sslmode", "require")
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


def _split_csv(value: str) -> list[str]:
    return [item for item in (part.strip() for part in value.split(",")) if item]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/chainpulse.db",
        description="SQLAlchemy compatible database URL",
    )
    supabase_db_url: AnyUrl | str | None = Field(
        default=None,
        description="Supabase pooled Postgres connection string for production runs",
    )

    the_graph_api_key: str | None = Field(
        default=None,
        description="API key for The Graph gateway; public hosted endpoints are used when unset",
    )
    the_graph_host: str | None = Field(
        default=None,
        description="Explicit subgraph host prefix; takes precedence over the gateway URL",
    )
    subgraph_timeout_seconds: float = Field(
        default=30.0,
        description="Per-request timeout for subgraph queries",
        gt=0,
    )
    gmx_subgraph_id: str | None = Field(
        default=None,
        description="Subgraph id for the GMX derivatives source; the source is skipped when unset",
    )
    disabled_sources: list[str] | str = Field(
        default_factory=list,
        description="Source keys to exclude from the registry (comma-separated or JSON array)",
    )
    extra_sources: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Additional source definitions appended to the built-in catalog",
    )

    fetch_batch_size: int = Field(
        default=1000,
        description="Rows requested per paginated subgraph query",
        ge=1,
        le=1000,
    )
    fetch_window_hours: int = Field(
        default=12,
        description="Trailing window, in hours, used as the lower bound for event queries",
        ge=1,
    )
    default_limit_per_protocol: int = Field(
        default=MAX_LIMIT_PER_PROTOCOL,
        description="Row budget per source when the caller does not provide one",
        ge=MIN_LIMIT_PER_PROTOCOL,
        le=MAX_LIMIT_PER_PROTOCOL,
    )
    lending_market_limit: int = Field(
        default=50,
        description="Number of lending markets captured in each snapshot (ordered by TVL)",
        ge=1,
    )
    fetch_max_workers: int = Field(
        default=4,
        description="Worker threads used for independent entity fetches inside one domain",
        ge=1,
    )
    derivatives_entity_shares: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_DERIVATIVES_ENTITY_SHARES),
        description="Fraction of the derivatives row budget assigned to each entity type",
    )
    nft_entity_shares: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_NFT_ENTITY_SHARES),
        description="Fraction of the NFT row budget assigned to each entity type",
    )

    upsert_batch_size: int = Field(
        default=1000,
        description="Rows written per upsert statement",
        ge=1,
    )
    cleanup_raw_after_report: bool = Field(
        default=False,
        description="Purge raw working rows once a report has been saved",
    )
    raw_retention_hours: float = Field(
        default=24.0,
        description="Raw rows fetched within this many hours survive cleanup, and 0 purges everything",
        ge=0,
    )

    inference_api_key: str | None = Field(
        default=None,
        description="API key for the OpenAI-compatible completion endpoint",
    )
    inference_base_url: AnyUrl | str = Field(
        default="https://api-beta.daydreams.systems/v1",
        description="Base URL for the OpenAI-compatible completion endpoint",
    )
    report_model: str = Field(
        default="openai/gpt-4o",
        description="Completion model; a leading provider prefix is stripped before the call",
    )
    max_completion_tokens: int = Field(
        default=8000,
        description="Upper bound on tokens generated for a report",
        ge=1,
    )
    report_temperature: float = Field(
        default=0.2,
        description="Sampling temperature for report synthesis",
        ge=0,
        le=2,
    )
    completion_timeout_seconds: float = Field(
        default=300.0,
        description="Timeout applied to a single completion request",
        gt=0,
    )
    completion_max_retries: int = Field(
        default=2,
        description="Retries performed by the OpenAI SDK for transient completion errors",
        ge=0,
    )
    report_source_tag: str = Field(
        default="graph",
        description="Source tag under which reports are stored",
    )
    section_char_budgets: dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_SECTION_CHAR_BUDGETS),
        description="Character budget per prompt section (dex, lending, nft, derivatives, cross)",
    )

    @field_validator("database_url", "supabase_db_url", mode="before")
    @classmethod
    def _normalize_postgres_urls(cls, value: Any) -> Any:
        if value is None or not isinstance(value, str):
            return value
        if value.startswith("postgres://"):
            return "postgresql://" + value[len("postgres://") :]
        return value

    @field_validator("supabase_db_url")
    @classmethod
    def _require_postgres_scheme(cls, value: Any) -> Any:
        if value is None:
            return value
        scheme = str(value).split(":", 1)[0].lower()
        if scheme not in {"postgres", "postgresql", "postgresql+psycopg"}:
            raise ValueError(
                "SUPABASE_DB_URL must be a PostgreSQL connection string (e.g. postgresql://...)."
            )
        return value

    @field_validator("disabled_sources", mode="after")
    @classmethod
    def _parse_disabled_sources(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return _split_csv(value)
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError(
            "DISABLED_SOURCES must be provided as a list or comma-separated string"
        )

    @field_validator("extra_sources")
    @classmethod
    def _validate_extra_sources(cls, value: list[dict[str, Any]]) -> list[dict[str, Any]]:
        required = {"key", "subgraph_id", "protocol", "network", "domain_type"}
        for entry in value:
            missing = sorted(required - set(entry))
            if missing:
                raise ValueError(
                    "EXTRA_SOURCES entries require: " + ", ".join(missing)
                )
        return value

    @field_validator("derivatives_entity_shares", "nft_entity_shares")
    @classmethod
    def _validate_shares(cls, value: dict[str, float]) -> dict[str, float]:
        if not value:
            raise ValueError("entity share mapping must not be empty")
        for entity, share in value.items():
            if share < 0:
                raise ValueError(f"entity share for {entity} must not be negative")
        return value

    @field_validator("section_char_budgets")
    @classmethod
    def _validate_budgets(cls, value: dict[str, int]) -> dict[str, int]:
        merged = dict(DEFAULT_SECTION_CHAR_BUDGETS)
        for section, budget in value.items():
            if int(budget) <= 0:
                raise ValueError(f"character budget for {section} must be positive")
            merged[section] = int(budget)
        return merged

    @property
    def resolved_database_url(self) -> str:
        environment = self.environment.lower()
        if environment == "production":
            if not self.supabase_db_url:
                raise ValueError(
                    "SUPABASE_DB_URL must be set when ENVIRONMENT=production"
                )
            return _ensure_sqlalchemy_postgres_scheme(str(self.supabase_db_url))
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    @property
    def resolved_report_model(self) -> str:
        """Model name as the completion endpoint expects it (no provider prefix)."""

        model = self.report_model.strip()
        if "/" in model:
            return model.split("/", 1)[1]
        return model


@lru_cache
def get_settings() -> Settings:
    return Settings()
