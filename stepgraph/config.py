"""
Configuration settings for StepGraph.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # Application
    APP_NAME: str = "StepGraph"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Workflow Engine
    RECURSION_LIMIT: Optional[int] = None  # Max supersteps per run, None = unbounded
    STEP_TIMEOUT: Optional[float] = None  # Seconds per step, None = no deadline
    PARALLEL_BRANCHES: bool = True  # Run fan-out branches concurrently

    # Modules imported at startup; they register workflows in the global registry
    WORKFLOW_MODULES: List[str] = []

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
