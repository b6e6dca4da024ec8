from functools import lru_cache
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AnyUrl, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _ensure_sqlalchemy_postgres_scheme(value: str) -> str:
    if not value.lower().startswith("postgres"):
        return value

    parsed = urlparse(value)
    scheme = parsed.scheme.lower()

    if scheme == "postgres":
        scheme = "postgresql"

    if scheme == "postgresql":
        scheme = "postgresql+psycopg"

    if scheme not in {"postgresql+psycopg", "postgresql+asyncpg"}:
        scheme = "postgresql+psycopg"

    query_params = dict(parse_qsl(parsed.query, keep_blank_values=True))
    query_params.setdefault("target_session_attrs", "read-write")
    new_query = urlencode(query_params, doseq=True)

    return urlunparse(parsed._replace(scheme=scheme, query=new_query))


class InstrumentSource(BaseModel):
    """How an instrument symbol maps onto the upstream price API."""

    coin_id: str
    vs_currency: str


def _default_instruments() -> dict[str, InstrumentSource]:
    return {"BTCUSD": InstrumentSource(coin_id="bitcoin", vs_currency="usd")}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    log_level: str = Field(default="INFO", description="Minimum loguru level for workers")
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/guessgame.db",
        description="SQLAlchemy compatible database URL",
    )

    default_instrument: str = Field(
        default="BTCUSD",
        description="Instrument used when a guess does not name one",
    )
    instruments: dict[str, InstrumentSource] = Field(
        default_factory=_default_instruments,
        description="Supported instruments keyed by symbol, with their upstream identifiers",
    )
    price_source_base_url: AnyUrl = Field(
        default="https://api.coingecko.com/api/v3",
        description="Base URL for the upstream spot price API",
    )
    price_source_timeout_seconds: float = Field(
        default=10.0, description="HTTP timeout for upstream price requests", gt=0
    )
    price_cache_ttl_seconds: float = Field(
        default=5.0,
        description="Age under which a cached observation is served instead of calling upstream",
        gt=0,
    )
    price_retention_days: int = Field(
        default=7, description="Days a price observation is kept before purge", ge=1
    )

    guess_resolution_delay_seconds: int = Field(
        default=60,
        description="Minimum time between placing a guess and the first resolution attempt",
    )
    guess_retry_delay_seconds: int = Field(
        default=10,
        description="Flat delay before re-checking a price that has not moved",
    )
    guess_max_retries: int = Field(
        default=6,
        description="Price-unchanged retries before an unchanged price is accepted as final",
        ge=0,
    )
    history_default_limit: int = Field(default=10, ge=1)
    history_max_limit: int = Field(default=100, ge=1)

    queue_visibility_timeout_seconds: int = Field(
        default=90,
        description="How long a claimed resolution task stays hidden before redelivery",
    )
    queue_max_receive_count: int = Field(
        default=3,
        description="Deliveries allowed before a task is moved to the dead-letter path",
        ge=1,
    )
    queue_retention_days: int = Field(
        default=14, description="Days an undelivered task is kept before purge", ge=1
    )
    worker_poll_interval_seconds: float = Field(
        default=1.0, description="Sleep between empty queue polls", gt=0
    )

    event_fanout_url: AnyUrl | str | None = Field(
        default=None,
        description="GraphQL endpoint receiving resolution and price events",
    )
    event_fanout_api_key: str | None = Field(
        default=None, description="API key sent with fan-out requests"
    )
    confirmation_hook_secret: str | None = Field(
        default=None,
        description="Shared secret the identity provider sends in X-Hook-Secret with confirmations",
    )
    change_stream_batch_size: int = Field(default=10, ge=1)
    change_stream_max_attempts: int = Field(
        default=5,
        description="Publish attempts before a change record is abandoned",
        ge=1,
    )

    @field_validator(
        "guess_resolution_delay_seconds",
        "guess_retry_delay_seconds",
        "queue_visibility_timeout_seconds",
    )
    @classmethod
    def _require_positive_delay(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("delays must be positive")
        return value

    @field_validator("default_instrument")
    @classmethod
    def _normalize_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("instruments", mode="before")
    @classmethod
    def _normalize_instrument_keys(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key).strip().upper(): item for key, item in value.items()}
        return value

    @field_validator("event_fanout_url", mode="before")
    @classmethod
    def _blank_url_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def resolved_database_url(self) -> str:
        return _ensure_sqlalchemy_postgres_scheme(str(self.database_url))

    def instrument_source(self, instrument: str) -> InstrumentSource | None:
        return self.instruments.get(instrument.strip().upper())


@lru_cache
def get_settings() -> Settings:
    return Settings()
