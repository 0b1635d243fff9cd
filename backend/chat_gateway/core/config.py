from typing import Annotated, Any, Literal

from pydantic import AnyUrl, BeforeValidator, HttpUrl, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors(v: Any) -> list[str] | str:
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",")]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Chat Stream Gateway"
    ENVIRONMENT: Literal["local", "test", "staging", "production"] = "local"
    SENTRY_DSN: HttpUrl | None = None

    FRONTEND_HOST: str = "http://localhost:3000"
    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS] + [
            self.FRONTEND_HOST
        ]

    DATABASE_URL: str = "sqlite:///./chat.db"

    # Resumable streams are disabled when unset
    REDIS_URL: str | None = None
    STREAM_TTL_SECONDS: int = 24 * 60 * 60
    STREAM_READ_BLOCK_MS: int = 5000

    OPENAI_API_KEY: str | None = None
    OPENAI_ORG: str | None = None
    OPENAI_PROJECT: str | None = None
    OPENAI_TIMEOUT_SECONDS: float = 60.0
    OPENAI_MODEL: str = "gpt-4"

    A2A_BASE_URL: str = "http://localhost:9999"
    A2A_TIMEOUT_SECONDS: float = 120.0

    WEATHER_API_URL: str = "https://api.open-meteo.com/v1/forecast"

    MAX_STEPS: int = 5
    STREAM_SMOOTHING_DELAY_MS: int = 10

    # Burst throttle per identity; daily quotas are enforced separately
    RATE_LIMIT_PER_MINUTE: int = 60
    GUEST_MAX_MESSAGES_PER_DAY: int = 20
    REGULAR_MAX_MESSAGES_PER_DAY: int = 100
    MESSAGE_WINDOW_HOURS: int = 24

    IDENTITY_CACHE_TTL_SECONDS: int = 60


settings = Settings()  # type: ignore
