from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # Database
    DATABASE_URL: str = "sqlite:///./doctrack.db"

    # Security
    SECRET_KEY: str = "doctrack-super-secret-key-change-in-production"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24  # 24 hours
    DOCUMENT_HANDLE_EXPIRE_SECONDS: int = 60 * 60  # 1 hour
    IP_HASH_SALT: str = "doctrack-salt-change-in-production"

    # Geo lookup
    GEOIP_ENABLED: bool = True
    GEOIP_TIMEOUT: float = 2.0

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = True
    ACCESS_RATE_LIMIT: str = "20/15minutes"
    TRACKING_RATE_LIMIT: str = "100/minute"
    STATS_RATE_LIMIT: str = "30/minute"

    # Retention windows (advertised to viewers as privacy guarantees)
    SESSION_RETENTION_DAYS: int = 30
    SESSION_FALLBACK_RETENTION_DAYS: int = 30
    SUMMARY_RETENTION_MONTHS: int = 26
    EMAIL_CAPTURE_RETENTION_MONTHS: int = 12
    ORPHAN_DOCUMENT_RETENTION_DAYS: int = 90

    # Background jobs
    SCHEDULER_ENABLED: bool = True
    IDLE_SESSION_TIMEOUT_MINUTES: int = 30
    IDLE_REAPER_INTERVAL_MINUTES: int = 5
    RETENTION_SWEEP_HOUR: int = 2
    SUMMARY_JOB_HOUR: int = 1

    # Object storage
    STORAGE_ENDPOINT: str = "http://localhost:9000"
    STORAGE_BUCKET: str = "doctrack"
    STORAGE_TOKEN: Optional[str] = None
    STORAGE_TIMEOUT: float = 5.0

    # Suspicious access detection
    SUSPICIOUS_FAILURE_THRESHOLD: int = 5
    SUSPICIOUS_WINDOW_MINUTES: int = 15

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None

    # Domain
    BASE_URL: str = "http://localhost:3000"

    class Config:
        env_file = ".env"


settings = Settings()
