from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=True, extra="ignore")

    KAPSULE_ENV: str = "development"
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"
    API_CORS_ORIGINS: str = "*"
    SUPABASE_URL: str
    SUPABASE_ANON_KEY: str
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    SUPABASE_ISSUER: str | None = None
    SUPABASE_JWKS_URL: str | None = None
    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None
    REVENUECAT_API_KEY: str | None = None
    REVENUECAT_WEBHOOK_SECRET: str | None = None
    REVENUECAT_PRODUCT_ID: str = "prodf80630b359"
    REVENUECAT_API_URL: str = "https://api.revenuecat.com/v1"
    REVENUECAT_FALLBACK_PRICE: float = 10.99
    REVENUECAT_FALLBACK_CURRENCY: str = "GBP"
    ELEVENLABS_API_KEY: str | None = None
    ELEVENLABS_API_URL: str = "https://api.elevenlabs.io/v1"
    OPENAI_API_KEY: str | None = None
    COVER_ART_MODEL: str = "dall-e-3"
    COVER_ART_SIZE: str = "1024x1024"
    COVER_ART_BUCKET: str = "coverart"
    COVER_ART_MAX_BYTES: int = 20_000_000
    PROVIDER_TIMEOUT_SECONDS: float = 30.0

    @model_validator(mode="after")
    def apply_supabase_defaults(self) -> "Settings":
        if not self.SUPABASE_URL.strip():
            raise ValueError("SUPABASE_URL must be configured")
        if not self.SUPABASE_ANON_KEY.strip():
            raise ValueError("SUPABASE_ANON_KEY must be configured")

        if not self.SUPABASE_ISSUER:
            self.SUPABASE_ISSUER = f"{self.SUPABASE_URL.rstrip('/')}/auth/v1"
        if not self.SUPABASE_JWKS_URL:
            self.SUPABASE_JWKS_URL = (
                f"{self.SUPABASE_ISSUER.rstrip('/')}/.well-known/jwks.json"
            )
        return self

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.API_CORS_ORIGINS.split(",") if origin.strip()]


def configured_secret(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return value.strip()


@lru_cache
def get_settings() -> Settings:
    return Settings()
