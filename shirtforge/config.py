from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_project_root = Path(__file__).resolve().parents[1]
load_dotenv(_project_root / ".env", override=False)


class Settings(BaseSettings):
    ENVIRONMENT: str = "development"
    PORT: int = 3001
    BACKEND_CORS_ORIGINS: str = "http://localhost:5173,http://localhost:8080"

    PRINTIFY_API_TOKEN: str | None = None
    PRINTIFY_API_BASE_URL: str = "https://api.printify.com/v1"
    PRINTIFY_USER_AGENT: str = "Creative-Shirt-Maker/1.0"
    PRINTIFY_SHOP_ID: str = "24294177"
    PRINTIFY_SHOP_NAME: str = "AI-Shirt-Guy"
    PRINTIFY_REQUEST_TIMEOUT_SECONDS: float = 30.0

    STRIPE_SECRET_KEY: str | None = None
    STRIPE_WEBHOOK_SECRET: str | None = None

    HUGGINGFACE_API_TOKEN: str | None = None
    HUGGINGFACE_MODEL: str = "stabilityai/stable-diffusion-xl-base-1.0"
    IMAGE_REQUEST_TIMEOUT_SECONDS: float = 60.0

    ADMIN_PASSWORD: str = "admin123"
    ADMIN_CONFIG_PATH: str = "data/adminConfig.json"

    # Minimum spacing between sequential product creations against Printify.
    PRODUCT_CREATION_INTERVAL_SECONDS: float = 1.0
    ALL_PRODUCTS_REFRESH_INTERVAL_SECONDS: float = 30.0

    GENERAL_RATE_LIMIT: int = 100
    PAYMENT_RATE_LIMIT: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 15 * 60
    IMAGE_RATE_LIMIT: int = 5
    IMAGE_RATE_LIMIT_WINDOW_SECONDS: int = 60

    WORKFLOW_SESSION_IDLE_SECONDS: int = 2 * 60 * 60

    @field_validator("PRINTIFY_API_TOKEN", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "HUGGINGFACE_API_TOKEN")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        return sorted({origin.strip() for origin in self.BACKEND_CORS_ORIGINS.split(",") if origin.strip()})

    @property
    def printify_base_url(self) -> str:
        return self.PRINTIFY_API_BASE_URL.rstrip("/")

    @property
    def admin_config_path(self) -> Path:
        path = Path(self.ADMIN_CONFIG_PATH)
        if path.is_absolute():
            return path
        return _project_root / path

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


REQUIRED_SETTINGS = ("PRINTIFY_API_TOKEN", "STRIPE_SECRET_KEY")


def missing_required_settings(current: Settings | None = None) -> list[str]:
    current = current or settings
    return [name for name in REQUIRED_SETTINGS if not getattr(current, name)]
