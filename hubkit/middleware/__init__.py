"""
Global middleware for API requests.

Provides:
- Correlation ID injection (X-Correlation-ID)
- Error envelope standardization
- Sampled request logging
"""

from .request_id import (
    CORRELATION_ID_HEADER,
    resolve_correlation_id,
    correlation_headers,
    setup_request_id_middleware,
    get_correlation_id,
)
from .error_envelope import setup_error_handlers
from .request_logging import setup_request_logging_middleware

__all__ = [
    'CORRELATION_ID_HEADER',
    'resolve_correlation_id',
    'correlation_headers',
    'setup_request_id_middleware',
    'get_correlation_id',
    'setup_error_handlers',
    'setup_request_logging_middleware',
]
