from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    # Application settings
    app_name: str = "Tenant Portal"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"

    # Platform backend serving the plugin catalog, marketplace and licences
    plugin_backend_url: str = "http://localhost:8787"
    plugin_backend_token: str | None = None

    # Plugin bundles
    blog_plugin_id: str = "550e8400-e29b-41d4-a716-446655440001"
    plugin_source: str = "portal.plugins.bundles"
    plugin_lazy_load: bool = True

    # Registry bootstrap policy
    registry_timeout_seconds: float = 10.0
    registry_retry_attempts: int = 3
    registry_retry_backoff: list[float] = [0.5, 1.0, 2.0]

    # Authentication: tokens are issued by the platform auth service
    secret_key: str = "your_secret_key"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # Authorization
    super_admin_role_id: int = 1

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # CORS settings
    allowed_origins: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


settings = Settings()
