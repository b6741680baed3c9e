import warnings
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Platform edge hostname every custom domain CNAMEs to unless the order overrides it
DEFAULT_TARGET_HOST = "edge.personas.app"


class Settings(BaseSettings):
    APP_NAME: str = "Persona Domains"
    APP_ENV: str = "development"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: str = ""

    # Database
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_DB: str = "persona_domains"
    SQLALCHEMY_DATABASE_URI: Optional[str] = None   # overrides POSTGRES_* when set
    SLOW_QUERY_THRESHOLD_MS: int = 500
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800                   # 30 minutes
    DB_ECHO: bool = False

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Cloudflare (DNS zones, records and edge certificates)
    CLOUDFLARE_API_URL: str = "https://api.cloudflare.com/client/v4"
    CLOUDFLARE_API_TOKEN: str = ""
    CLOUDFLARE_ACCOUNT_ID: str = ""
    CLOUDFLARE_TIMEOUT_SECONDS: float = 15.0
    CLOUDFLARE_MAX_RETRIES: int = 3
    CLOUDFLARE_TOKEN_CACHE_SECONDS: int = 300     # token verification result cache

    # Name.com (registrar nameserver delegation, optional)
    NAMECOM_API_URL: str = "https://api.name.com/v4"
    NAMECOM_USERNAME: str = ""
    NAMECOM_API_TOKEN: str = ""
    NAMECOM_TIMEOUT_SECONDS: float = 15.0

    # Domain activation
    DOMAIN_TARGET_HOST: str = DEFAULT_TARGET_HOST
    PROVIDER_ERROR_MAX_LENGTH: int = 500

    # Scheduled re-checks (exponential backoff, seconds)
    DOMAIN_RECHECK_BASE_SECONDS: int = 30
    DOMAIN_RECHECK_MAX_SECONDS: int = 900
    DOMAIN_RECHECK_MAX_ATTEMPTS: int = 48
    DOMAIN_RECONCILE_INTERVAL_SECONDS: int = 600
    DOMAIN_AUTO_RECHECK: bool = False             # queue backoff re-checks after a successful setup

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":
        """Block startup on unsafe or half-configured settings in production / staging."""
        if bool(self.CLOUDFLARE_API_TOKEN) != bool(self.CLOUDFLARE_ACCOUNT_ID):
            warnings.warn(
                "Only one of CLOUDFLARE_API_TOKEN / CLOUDFLARE_ACCOUNT_ID is set; "
                "automatic DNS setup stays disabled until both are configured.",
                UserWarning,
                stacklevel=2,
            )
        if self.APP_ENV in ("production", "staging"):
            if bool(self.CLOUDFLARE_API_TOKEN) != bool(self.CLOUDFLARE_ACCOUNT_ID):
                raise ValueError(
                    "CLOUDFLARE_API_TOKEN and CLOUDFLARE_ACCOUNT_ID must be set together."
                )
            if not self.SQLALCHEMY_DATABASE_URI and self.POSTGRES_PASSWORD in ("postgres", ""):
                raise ValueError(
                    "POSTGRES_PASSWORD is set to default 'postgres'. "
                    "Set a strong password in .env or environment."
                )
            if self.DOMAIN_RECHECK_BASE_SECONDS > self.DOMAIN_RECHECK_MAX_SECONDS:
                raise ValueError(
                    "DOMAIN_RECHECK_BASE_SECONDS must not exceed DOMAIN_RECHECK_MAX_SECONDS."
                )
        return self

    @property
    def database_url(self) -> str:
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"
        )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "production"

    @property
    def is_staging(self) -> bool:
        return self.APP_ENV == "staging"

settings = Settings()
