"""
Application Configuration Settings
"""

from pydantic_settings import BaseSettings
from typing import List
import os


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Expense Report Approval System"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str
    DATABASE_ECHO: bool = False

    # JWT (tokens are issued by the identity provider, we only verify them)
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # Comma-separated string

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated string to list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIRECTORY: str = "logs"
    LOG_FILE: str = "logs/app.log"

    # Workflow
    # When False, a Dean SRIC / Director who is not the registered approver
    # is only logged. When True the action is refused.
    STRICT_INSTITUTE_APPROVER_MATCH: bool = False
    MAX_REMARKS_LENGTH: int = 500
    REPORT_NUMBER_PREFIX: str = "EXR"

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create settings instance
settings = Settings()


# Ensure log directory exists
os.makedirs(settings.LOG_DIRECTORY, exist_ok=True)
