"""Configuration for the device loan service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    service_name: str = "loan-service"
    system_name: str = "Campus Device Loan System"
    log_level: str = "INFO"

    # Email notification path
    email_timeout_seconds: float = 5.0
    email_retry_max_attempts: int = 3
    email_retry_initial_delay: float = 1.0  # seconds
    email_retry_max_delay: float = 5.0  # seconds
    email_retry_backoff_multiplier: float = 2.0
    simulate_email_failure: bool = False  # Force the default sender to fail

    # Email circuit breaker
    email_breaker_failure_threshold: int = 5
    email_breaker_reset_timeout: float = 60.0  # seconds
    email_breaker_monitoring_period: float = 60.0  # seconds

    # Rate limiting
    rate_limit_window_seconds: float = 15 * 60
    rate_limit_max_requests: int = 100
    strict_rate_limit_window_seconds: float = 60.0
    strict_rate_limit_max_requests: int = 10
    rate_limit_cleanup_interval: float = 60.0

    # Pagination
    default_page_size: int = 10
    max_page_size: int = 100

    # Monitoring
    metrics_enabled: bool = False
    metrics_host: str = "0.0.0.0"
    metrics_port: int = 8000
    alert_check_interval: float = 60.0  # seconds

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
