from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class AppConfig(BaseSettings):
    """Application configuration using Pydantic BaseSettings.

    Loads configuration from environment variables and .env file (if present).
    Fields are type-checked and validated. Defaults are provided where appropriate.
    """
    # Database
    database_url: Optional[str] = None
    database_name: Optional[str] = None

    # Application
    app_name: str = "RestoManager POS API"
    app_env: str = "development"
    log_level: str = "INFO"
    cors_origins: str = "*"
    timezone: str = "UTC"

    # Auth
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7
    staff_roles: str = "admin,manager"

    # Orders
    order_number_retries: int = 3
    strict_status_transitions: bool = False

    # Seed data settings
    seed_admin_email: str = "admin@restomanager.local"
    seed_admin_password: str = "admin123"
    seed_admin_name: str = "Administrator"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def staff_role_list(self) -> List[str]:
        return [r.strip() for r in self.staff_roles.split(",") if r.strip()]

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_config: Optional[AppConfig] = None

def get_config() -> AppConfig:
    """Return the AppConfig instance (singleton pattern)."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config

def set_config_for_test(**kwargs):
    """For testing only: override the AppConfig instance with new values."""
    global _config
    _config = AppConfig(**kwargs)
