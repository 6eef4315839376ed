from __future__ import annotations
import logging
from pydantic_settings import BaseSettings
from pydantic import Field
from urllib.parse import quote_plus, urlparse

logger = logging.getLogger("freight-rating-api")

class Settings(BaseSettings):
    # Prefer a full DATABASE_URL; or supply PG* parts and we'll build it.
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    pg_host: str | None = Field(default=None, alias="PGHOST")
    pg_port: int = Field(default=5432, alias="PGPORT")
    pg_user: str | None = Field(default=None, alias="PGUSER")
    pg_password: str | None = Field(default=None, alias="PGPASSWORD")
    pg_db: str | None = Field(default=None, alias="PGDATABASE")

    # Local development database when nothing else is configured
    sqlite_path: str = Field(default="freight_rating.db", alias="RATING_SQLITE_PATH")

    default_currency: str = Field(default="CAD", alias="RATING_DEFAULT_CURRENCY")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(default="*", alias="CORS_ORIGINS")

    # One cache per logical domain; sizes are entry counts, TTLs in minutes
    zone_cache_max_size: int = Field(default=5000, alias="ZONE_CACHE_MAX_SIZE")
    zone_cache_ttl_minutes: float = Field(default=120, alias="ZONE_CACHE_TTL_MINUTES")
    rate_cache_max_size: int = Field(default=10000, alias="RATE_CACHE_MAX_SIZE")
    rate_cache_ttl_minutes: float = Field(default=60, alias="RATE_CACHE_TTL_MINUTES")
    carrier_config_cache_max_size: int = Field(default=1000, alias="CARRIER_CONFIG_CACHE_MAX_SIZE")
    carrier_config_cache_ttl_minutes: float = Field(default=480, alias="CARRIER_CONFIG_CACHE_TTL_MINUTES")

    model_config = {"env_file": ".env", "extra": "ignore"}

    @property
    def sqlalchemy_url(self) -> str:
        if self.database_url and self.database_url.startswith("sqlite"):
            logger.info("DB config source → DATABASE_URL (sqlite)")
            return self.database_url

        if self.database_url:
            parsed = urlparse(self.database_url)

            # Log parsed components (without password)
            logger.info(f"DB target → user={parsed.username} host={parsed.hostname} port={parsed.port} db={parsed.path.lstrip('/')}")
            logger.info("DB config source → DATABASE_URL")

            # Re-encode the password to handle special characters
            if parsed.password:
                encoded_password = quote_plus(parsed.password)
                fixed_url = f"{parsed.scheme}://{parsed.username}:{encoded_password}@{parsed.hostname}:{parsed.port}{parsed.path}"
                if parsed.query:
                    fixed_url = f"{fixed_url}?{parsed.query}"
                return fixed_url

            return self.database_url

        if self.pg_host and self.pg_user and self.pg_password and self.pg_db:
            logger.info(f"DB target → user={self.pg_user} host={self.pg_host} port={self.pg_port} db={self.pg_db}")
            logger.info("DB config source → PG* environment variables")

            encoded_password = quote_plus(self.pg_password)
            encoded_user = quote_plus(self.pg_user)

            return (
                f"postgresql+psycopg2://{encoded_user}:{encoded_password}"
                f"@{self.pg_host}:{self.pg_port}/{self.pg_db}?sslmode=require"
            )

        logger.info("DB config source → local sqlite (%s)", self.sqlite_path)
        return f"sqlite:///{self.sqlite_path}"

settings = Settings()
