from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except ValueError:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = "authenticated"
    database_url: str = ""

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    google_places_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("GOOGLE_PLACES_API_KEY", "GOOGLE_MAPS_API_KEY"),
    )
    places_timeout_seconds: float = 6.0

    # AI pricing
    enable_ai_pricing: bool = True
    enable_ai_overrides: bool = False
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    groq_api_key: str = ""
    ai_pricing_provider: str = "openai"
    ai_pricing_model: str = "gpt-4o-mini"
    ai_allowed_providers_raw: str = Field(
        default="openai,claude,groq,mock",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS"),
    )
    ai_timeout_seconds: float = 15.0
    ai_temperature: float = 0.2
    ai_max_tokens: int = 300
    ai_debug_store_raw: bool = False
    pricing_discount_pct: int = Field(default=15, ge=0, le=100)

    # Matching workflow
    status_poll_interval_seconds: float = Field(default=5.0, gt=0)
    status_session_idle_seconds: float = Field(default=3600.0, gt=0)
    revert_status_when_last_bid_cancelled: bool = False

    pii_redaction_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("PII_REDACTION_ENABLED"),
    )
    pii_redaction_fields: list[str] = Field(
        default_factory=lambda: [
            "phone",
            "email",
            "first_name",
            "last_name",
            "location",
            "start_location",
            "end_location",
        ],
        validation_alias=AliasChoices("PII_REDACTION_FIELDS"),
    )

    rate_limit_api_enabled: bool = False
    rate_limit_api_per_min: int = 300
    trusted_proxy_cidrs: list[str] = Field(default_factory=list)

    security_headers_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("SECURITY_HEADERS_ENABLED", "SECURE_HEADERS_ENABLED"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PATCH",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "pii_redaction_fields",
        "trusted_proxy_cidrs",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.ai_allowed_providers_raw)]

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        """Parse ``AI_ALLOWED_MODELS`` as ``provider:model`` pairs."""
        allowed: dict[str, list[str]] = {}
        for entry in _parse_list_value(self.ai_allowed_models_raw):
            provider, sep, model = entry.partition(":")
            if not sep or not model.strip():
                continue
            allowed.setdefault(provider.strip().lower(), []).append(model.strip())
        return allowed


@lru_cache
def get_settings() -> Settings:
    return Settings()
