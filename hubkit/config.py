import os
from datetime import timedelta
from typing import List, Optional

from dotenv import load_dotenv

from .auth import AuthConfig

load_dotenv()


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(',') if item.strip()]


class Config:
    JWT_SECRET = os.getenv('JWT_SECRET', '')
    JWT_ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
    JWT_ISSUER = os.getenv('JWT_ISSUER') or None
    JWT_AUDIENCE = os.getenv('JWT_AUDIENCE') or None
    JWT_LEEWAY_SECONDS = int(os.getenv('JWT_LEEWAY_SECONDS', '0'))
    JWT_EXPIRATION_HOURS = int(os.getenv('JWT_EXPIRATION_HOURS', '24'))

    # OpenAPI document metadata
    API_TITLE = os.getenv('API_TITLE', 'API')
    API_VERSION = os.getenv('API_VERSION', '1.0.0')
    API_DESCRIPTION = os.getenv('API_DESCRIPTION', '')
    # Comma-separated server URLs, e.g. "https://api.example.com,http://localhost:5000"
    API_SERVERS = _split_list(os.getenv('API_SERVERS'))

    # Flask rejects larger bodies with 413 before parsing
    MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', str(10 * 1024 * 1024)))

    CORS_ORIGINS = _split_list(os.getenv('CORS_ORIGINS')) or ['*']

    # Request logging
    REQUEST_LOG_ENABLED = os.getenv('REQUEST_LOG_ENABLED', 'true').lower() == 'true'
    REQUEST_LOG_SAMPLE_RATE = os.getenv('REQUEST_LOG_SAMPLE_RATE', '0.0')
    REQUEST_LOG_ENDPOINTS = _split_list(os.getenv('REQUEST_LOG_ENDPOINTS'))


def auth_config_from(config) -> Optional[AuthConfig]:
    """Build the JWT settings from a Config-like object; None without a secret."""
    secret = getattr(config, 'JWT_SECRET', None)
    if not secret:
        return None
    return AuthConfig(
        secret=secret,
        algorithms=[getattr(config, 'JWT_ALGORITHM', 'HS256')],
        issuer=getattr(config, 'JWT_ISSUER', None),
        audience=getattr(config, 'JWT_AUDIENCE', None),
        leeway_seconds=getattr(config, 'JWT_LEEWAY_SECONDS', 0),
        token_lifetime=timedelta(hours=getattr(config, 'JWT_EXPIRATION_HOURS', 24)),
    )
