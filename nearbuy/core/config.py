from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from container + optionally from files
    model_config = SettingsConfigDict(
        env_file=(".env", ".env.docker"),
        extra="ignore",
        case_sensitive=False,
    )

    # App
    ENVIRONMENT: str = Field(default="dev", validation_alias=AliasChoices("ENVIRONMENT", "environment"))
    APP_NAME: str = Field(default="nearbuy", validation_alias=AliasChoices("APP_NAME", "app_name"))
    LOG_LEVEL: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))
    DEBUG: bool = Field(default=False, validation_alias=AliasChoices("DEBUG", "debug"))

    # Infrastructure
    DATABASE_URL: str = Field(
        default="postgresql+asyncpg://postgres:postgres@db:5432/nearbuy",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
    )
    REDIS_URL: str = Field(
        default="redis://redis:6379/0",
        validation_alias=AliasChoices("REDIS_URL", "redis_url"),
    )
    # "inline" handles the message inside the webhook request, "queue" hands it to arq
    INBOUND_MODE: str = Field(default="inline", validation_alias=AliasChoices("INBOUND_MODE", "inbound_mode"))

    # WhatsApp Meta
    WHATSAPP_VERIFY_TOKEN: str = Field(default="", validation_alias=AliasChoices("WHATSAPP_VERIFY_TOKEN", "whatsapp_verify_token"))
    WHATSAPP_ACCESS_TOKEN: str = Field(default="", validation_alias=AliasChoices("WHATSAPP_ACCESS_TOKEN", "whatsapp_access_token"))
    WHATSAPP_PHONE_NUMBER_ID: str = Field(default="", validation_alias=AliasChoices("WHATSAPP_PHONE_NUMBER_ID", "whatsapp_phone_number_id"))
    WHATSAPP_API_VERSION: str = Field(default="v20.0", validation_alias=AliasChoices("WHATSAPP_API_VERSION", "whatsapp_api_version"))

    # Media storage (uploaded offer images, agreement PDFs)
    MEDIA_ROOT: str = Field(default="media", validation_alias=AliasChoices("MEDIA_ROOT", "media_root"))
    MEDIA_BASE_URL: str = Field(
        default="http://localhost:8000/media",
        validation_alias=AliasChoices("MEDIA_BASE_URL", "media_base_url"),
    )

    # Sessions
    SESSION_TTL_SECONDS: int = Field(default=14 * 24 * 60 * 60, validation_alias=AliasChoices("SESSION_TTL_SECONDS", "session_ttl_seconds"))
    SOFT_EXPIRY_SECONDS: int = Field(default=30 * 60, validation_alias=AliasChoices("SOFT_EXPIRY_SECONDS", "soft_expiry_seconds"))
    SESSION_LOCK_TIMEOUT_SECONDS: int = Field(default=30, validation_alias=AliasChoices("SESSION_LOCK_TIMEOUT_SECONDS", "session_lock_timeout_seconds"))
    SESSION_LOCK_WAIT_SECONDS: int = Field(default=15, validation_alias=AliasChoices("SESSION_LOCK_WAIT_SECONDS", "session_lock_wait_seconds"))

    # Business limits
    MAX_AMOUNT: int = Field(default=100_000_000, validation_alias=AliasChoices("MAX_AMOUNT", "max_amount"))
    DEFAULT_COUNTRY_CODE: str = Field(default="91", validation_alias=AliasChoices("DEFAULT_COUNTRY_CODE", "default_country_code"))
    OFFER_DEFAULT_RADIUS_KM: int = Field(default=5, validation_alias=AliasChoices("OFFER_DEFAULT_RADIUS_KM", "offer_default_radius_km"))
    FISH_BROWSE_RADIUS_KM: int = Field(default=10, validation_alias=AliasChoices("FISH_BROWSE_RADIUS_KM", "fish_browse_radius_km"))
    REQUEST_EXPIRY_HOURS: int = Field(default=24, validation_alias=AliasChoices("REQUEST_EXPIRY_HOURS", "request_expiry_hours"))
    AGREEMENT_CONFIRM_HOURS: int = Field(default=72, validation_alias=AliasChoices("AGREEMENT_CONFIRM_HOURS", "agreement_confirm_hours"))


settings = Settings()
