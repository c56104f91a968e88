from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List

class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # API Settings
    PROJECT_NAME: str = "Tabsera Settlements API"
    API_V1_STR: str = "/api/v1"
    PROJECT_VERSION: str = "0.1.0"
    DESCRIPTION: str = "Revenue-share settlement engine for partner learning centers"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # MongoDB
    MONGODB_URI: str = "mongodb://localhost:27017"
    MONGODB_DB: str = "tabsera_settlements"

    # Settlement engine
    BASE_CURRENCY: str = "USD"
    BATCH_CONCURRENCY: int = 8
    CENTER_TIMEOUT_SECONDS: float = 30.0
    LOW_COLLECTION_THRESHOLD_PCT: int = 90
    SYSTEM_ACTOR: str = "system"

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env"
    )

settings = Settings()
