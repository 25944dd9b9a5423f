"""
Correlation ID middleware - propagate X-Correlation-ID for request tracing.

Provides:
- Correlation ID resolution (reuse inbound header, else generate a UUID4)
- Response header addition
- Headers for forwarding the ID to downstream calls
"""

import uuid
from typing import Dict, Optional

from flask import Flask, request, g


CORRELATION_ID_HEADER = 'X-Correlation-ID'


def resolve_correlation_id(header_value: Optional[str]) -> str:
    """
    Reuse a non-empty inbound correlation ID verbatim, otherwise generate one.

    Args:
        header_value: Raw value of the inbound correlation header, if any

    Returns:
        Correlation ID string
    """
    if header_value:
        return header_value
    return str(uuid.uuid4())


def correlation_headers(correlation_id: str) -> Dict[str, str]:
    """Headers to attach to downstream calls made while serving a request."""
    return {CORRELATION_ID_HEADER: correlation_id}


def setup_request_id_middleware(app: Flask) -> None:
    """
    Set up correlation ID middleware on Flask app.

    Covers routes outside the contract pipeline (health, 404s). Injects the
    correlation ID into:
    - Flask's g object (g.correlation_id)
    - Response headers (X-Correlation-ID)

    Args:
        app: Flask application instance
    """

    @app.before_request
    def inject_correlation_id():
        g.correlation_id = resolve_correlation_id(
            request.headers.get(CORRELATION_ID_HEADER)
        )

    @app.after_request
    def add_correlation_id_header(response):
        if CORRELATION_ID_HEADER not in response.headers and hasattr(g, 'correlation_id'):
            response.headers[CORRELATION_ID_HEADER] = g.correlation_id
        return response


def get_correlation_id() -> Optional[str]:
    """
    Get current correlation ID from Flask context.

    Returns:
        Correlation ID string, or None outside a request that resolved one
    """
    return getattr(g, 'correlation_id', None)
