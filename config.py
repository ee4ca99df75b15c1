"""Runtime configuration for the Homes Rental API."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from the environment (or a local .env file)."""

    # Auth
    secret_key: str = "supersecretkey"
    jwt_algorithm: str = "HS256"
    session_token_ttl_minutes: int = 60
    review_token_ttl_days: int = 7

    # Storage
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "homes_rental"

    # Booking policy
    booking_surcharge_factor: float = 1.04
    enforce_guest_capacity: bool = True
    frontend_base_url: str = "http://localhost:3000"

    # Email
    resend_api_key: str = ""
    from_email: str = "Homes Rental <bookings@homes-rental.example>"
    notification_timeout_seconds: float = 5.0

    # First admin, created at startup when none exists
    admin_username: str = "admin"
    admin_email: str = "admin@example.com"
    admin_password: str = "Admin@12345"

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
