"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings - connection values must come from environment variables."""

    # Application
    app_name: str = "cms-api"
    app_version: str = "1.0.0"
    debug: bool = False

    # MongoDB - REQUIRED from environment
    mongodb_uri: str
    mongodb_database: str

    # Keycloak - REQUIRED from environment
    keycloak_server_url: str
    keycloak_realm: str
    keycloak_client_id: str
    # Confidential client with the manage-users service account role
    keycloak_client_secret: str = ""
    keycloak_timeout_seconds: float = 10.0

    # Session cookie
    session_cookie_name: str = "auth-token"
    session_max_age_seconds: int = 3600
    cookie_secure: bool = False

    # Device pairing; a TTL of 0 disables expiry
    pairing_code_ttl_seconds: int = 600
    default_device_name: str = "New Device"

    # CORS - comma-separated list of allowed origins
    cors_origins: str = "http://localhost:8080"

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
