from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Pulse Jobs"
    ENVIRONMENT: str = "development"

    # Remote job service
    JOBS_API_BASE_URL: str = "http://localhost:8080/api"
    HTTP_TIMEOUT: float = 30.0
    HTTP_MAX_RETRIES: int = 3
    USER_AGENT: str = "PulseJobs/1.0"

    # Polling
    POLL_INTERVAL_SECONDS: float = 5.0
    POLL_MAX_ATTEMPTS: int = 120  # 10 minutes at the default interval

    # Local persistence
    CACHE_DIR: str = "/tmp/pulse_jobs_cache"
    JOB_RETENTION_HOURS: int = 24
    DEVICE_PLATFORM: str = "python"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


settings = Settings()
