"""
Application Configuration Settings
"""

from pydantic_settings import BaseSettings
from typing import List, Dict
import os


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Approval Portal"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./approval_portal.db"
    DATABASE_ECHO: bool = False

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"  # Comma-separated string

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert comma-separated string to list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    # Workflow
    WORKFLOW_MAX_CONFLICT_RETRIES: int = 1
    NOTIFICATIONS_ENABLED: bool = True

    # Request number prefixes by workflow kind (JSON object in the environment)
    REQUEST_NUMBER_PREFIXES: Dict[str, str] = {
        "payment": "PAY",
        "erp_product": "PR",
        "erp_supplier": "SR",
    }

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create settings instance
settings = Settings()


os.makedirs("logs", exist_ok=True)
