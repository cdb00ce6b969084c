import json
from typing import List, Union
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "Churchdesk Automation Engine"
    env: str = "dev"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # AUTOMATION ENGINE
    automation_action_delay_seconds: float = Field(default=2.0, ge=0, le=60)
    automation_run_timeout_seconds: float | None = Field(default=None, gt=0)
    automation_dispatch_secret: str | None = None

    # MESSAGING
    messaging_provider_default: str = "whatsapp_stub"
    evolution_api_url: str | None = None
    evolution_api_key: str | None = None
    evolution_api_timeout_seconds: int = Field(default=15, ge=1, le=120)
    message_outbox_max_attempts: int = Field(default=5, ge=1, le=20)
    message_outbox_retry_seconds: int = Field(default=300, ge=1, le=86400)
    api_timeout_hint_ms: int = Field(default=300000, ge=1000, le=1_800_000)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        if v is None:
            return []
        if isinstance(v, str):
            if not v.strip():
                return []
            if v.startswith("["):
                parsed = json.loads(v)
                if not isinstance(parsed, list):
                    raise ValueError("CORS_ORIGINS JSON value must be a list")
                return [str(i).strip() for i in parsed if str(i).strip()]
            return [i.strip() for i in v.split(",") if i.strip()]
        if isinstance(v, list):
            return [str(i).strip() for i in v if str(i).strip()]
        raise ValueError(v)

    @field_validator(
        "automation_dispatch_secret",
        "evolution_api_url",
        "evolution_api_key",
        mode="before",
    )
    @classmethod
    def normalize_optional_strings(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = str(value).strip()
        return cleaned or None

    @field_validator("messaging_provider_default", mode="before")
    @classmethod
    def normalize_provider_name(cls, value: str | None) -> str:
        return (str(value or "").strip().lower()) or "whatsapp_stub"

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if not self.automation_dispatch_secret or len(self.automation_dispatch_secret) < 32:
            raise ValueError("AUTOMATION_DISPATCH_SECRET must be a strong random value in production")

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")

        if self.messaging_provider_default == "evolution" and not (
            self.evolution_api_url and self.evolution_api_key
        ):
            raise ValueError("EVOLUTION_API_URL and EVOLUTION_API_KEY are required for the evolution provider")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
