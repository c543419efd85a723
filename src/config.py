from pydantic_settings import BaseSettings
from typing import List

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./ev_charging.db"
    DATABASE_ECHO: bool = False

    # Security
    SECRET_KEY: str = "dev-only-change-me"
    QR_SIGNATURE_LENGTH: int = 16

    # Application
    PROJECT_NAME: str = "EV Charging Station Booking System"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Booking policy
    BOOKING_WINDOW_DAYS: int = 7
    MODIFICATION_CUTOFF_HOURS: int = 12
    QR_GRACE_MINUTES: int = 15
    CHARGING_EFFICIENCY: float = 0.8

    # Listing
    USER_HISTORY_LIMIT: int = 50
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
