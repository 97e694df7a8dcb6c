from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from loyalty_backend.core.path_conf import BASE_PATH


class Settings(BaseSettings):
    """Global settings"""

    model_config = SettingsConfigDict(
        env_file=f'{BASE_PATH}/.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=True,
    )

    # .env environment
    ENVIRONMENT: Literal['dev', 'prod']

    # FastAPI
    FASTAPI_API_V1_PATH: str = '/api/v1'
    FASTAPI_TITLE: str = 'LoyaltyBilling'
    FASTAPI_DESCRIPTION: str = 'Restaurant loyalty subscription billing'
    FASTAPI_DOCS_URL: str = '/docs'
    FASTAPI_REDOC_URL: str = '/redoc'
    FASTAPI_OPENAPI_URL: str | None = '/openapi'

    # .env database
    DATABASE_HOST: str
    DATABASE_PORT: int = 5432
    DATABASE_USER: str
    DATABASE_PASSWORD: str

    # Database
    DATABASE_ECHO: bool | Literal['debug'] = False
    DATABASE_SCHEMA: str = 'postgres'
    DATABASE_POOL_SIZE: int = 10
    DATABASE_POOL_MAX_OVERFLOW: int = 20

    # .env Stripe
    STRIPE_SECRET_KEY: str = ''
    STRIPE_WEBHOOK_SECRET: str = ''

    # Stripe
    STRIPE_API_VERSION: str = '2023-10-16'  # pinned so proration defaults never drift
    STRIPE_WEBHOOK_TOLERANCE_SECONDS: int = 300
    STRIPE_IDEMPOTENCY_WINDOW_MINUTES: int = 10

    # .env Supabase auth
    SUPABASE_JWT_SECRET: str = ''

    # Supabase auth
    SUPABASE_JWT_AUDIENCE: str = 'authenticated'
    SUPABASE_JWT_ALGORITHM: str = 'HS256'

    # Billing
    BILLING_TRIAL_PERIOD_DAYS: int = 30
    BILLING_DEFAULT_CURRENCY: str = 'usd'

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = [  # no trailing slash
        'http://127.0.0.1:8000',
        'http://localhost:5173',
    ]
    CORS_EXPOSE_HEADERS: list[str] = [
        'X-Request-ID',
    ]

    # Middleware
    MIDDLEWARE_CORS: bool = True

    # Trace ID
    TRACE_ID_REQUEST_HEADER_KEY: str = 'X-Request-ID'
    TRACE_ID_LOG_LENGTH: int = 32  # UUID length, must be <= 32
    TRACE_ID_LOG_DEFAULT_VALUE: str = '-'

    # Logging
    LOG_FORMAT: str = (
        '<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</> | <lvl>{level: <8}</> | '
        '<cyan>{extra[request_id]}</> | <lvl>{message}</>'
    )

    # Logging (console)
    LOG_STD_LEVEL: str = 'INFO'

    # Logging (file)
    LOG_FILE_ENABLED: bool = True
    LOG_FILE_ACCESS_LEVEL: str = 'INFO'
    LOG_FILE_ERROR_LEVEL: str = 'ERROR'
    LOG_ACCESS_FILENAME: str = 'loyalty_billing_access.log'
    LOG_ERROR_FILENAME: str = 'loyalty_billing_error.log'


@lru_cache
def get_settings() -> Settings:
    """Get the cached global settings"""
    return Settings()


settings = get_settings()
