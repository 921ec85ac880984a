"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Lookgen Generation Core"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Remote Generation Service
    # ==========================================================================
    # PostgREST-style job store (ai_jobs, outfits, user_settings tables)
    GENERATION_API_URL: str = "http://localhost:54321"
    GENERATION_API_KEY: Optional[str] = None

    # Worker trigger endpoint (fire-and-forget)
    JOB_RUNNER_URL: str = "http://localhost:8888/.netlify/functions/ai-job-runner"
    TRIGGER_TIMEOUT_SECONDS: float = 5.0
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Lookups used to re-attach to a job instead of creating a duplicate
    JOB_LOOKUP_LIMIT: int = 10
    RECENT_JOB_WINDOW_SECONDS: int = 60

    # ==========================================================================
    # Storage Settings
    # ==========================================================================
    STORAGE_BUCKET: str = "media"
    LOCAL_STORAGE_PATH: str = "./data/storage"

    # Remote blob store, used when ENVIRONMENT=PROD and this is set
    STORAGE_API_URL: Optional[str] = None
    STORAGE_PUBLIC_BASE_URL: Optional[str] = None

    # ==========================================================================
    # Compositing Settings
    # ==========================================================================
    GRID_CANVAS_WIDTH: int = 1536
    GRID_CANVAS_HEIGHT: int = 2048  # 3:4 portrait
    GRID_PADDING: int = 20
    GRID_BACKGROUND: str = "#FFFFFF"
    GRID_JPEG_QUALITY: int = 80
    GRID_SAFETY_MARGIN: float = 1.0  # 1.0 = fill cell
    TRIM_THRESHOLD: int = 15

    # Speculative grid pre-generation (feature flag, default OFF)
    PREGEN_GRID_ENABLED: bool = False
    PREGEN_DEBOUNCE_MS: int = 2000
    PREGEN_STORAGE_PREFIX: str = "background-preview"

    # ==========================================================================
    # Polling Settings
    # ==========================================================================
    POLL_INTERVAL_MS: int = 2000
    POLL_MAX_ATTEMPTS: int = 30
    SINGLE_IMAGE_MAX_ATTEMPTS: int = 60
    MANNEQUIN_MAX_ATTEMPTS: int = 60
    RENDER_MAX_ATTEMPTS: int = 120

    # ==========================================================================
    # Model Settings
    # ==========================================================================
    DEFAULT_MODEL_PREFERENCE: str = "gemini-2.5-flash-image"
    RENDER_ITEM_LIMIT_DEFAULT: int = 2
    RENDER_ITEM_LIMIT_PRO: int = 7

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
