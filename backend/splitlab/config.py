"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "SplitLab"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./splitlab.db"

    # API keys (shared-key check; real authentication lives outside this service)
    admin_api_key: str = "admin-key-change-in-production"
    platform_api_key: str = "platform-key-change-in-production"

    # CORS
    frontend_url: str = "http://localhost:5173"

    # Experiment defaults
    default_target_sample_size: int = 100
    default_min_sample_for_significance: int = 30  # per version
    significance_level: float = 0.05

    # Optimistic concurrency
    max_concurrency_retries: int = 5

    # External content system (receives deployment requests)
    content_system_url: str = "http://localhost:3002"
    content_system_enabled: bool = True
    content_system_timeout: float = 2.0  # seconds - deployment is never on a learner's path

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
