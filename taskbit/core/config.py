from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, List, Union


class Settings(BaseSettings):
    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None
    redis_db: int = 0
    dashboard_cache_ttl_minutes: int = 5

    # Firebase
    firebase_project_id: str
    firebase_credentials_path: str

    # Stripe
    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_webhook_tolerance: int = 300
    currency: str = "usd"
    default_paid_plan: str = "basic"

    # API
    api_v1_str: str = "/api/v1"
    frontend_url: str = "http://localhost:3000"

    # Environment
    environment: str = "development"
    debug: bool = True

    # Client portal tokens (Fernet key)
    encryption_key: str
    portal_link_ttl_days: int = 30

    # Email
    sendgrid_api_key: Optional[str] = None
    mail_from: Optional[str] = None

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        """Accept a comma-separated string as well as a list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('frontend_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip('/')

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


settings = Settings()
