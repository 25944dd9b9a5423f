"""
Error envelope middleware - host errors in the contract error shape.

Contract endpoints render their own errors. Everything raised around them
(unknown route, wrong method, oversized body) and stray exceptions from plain
Flask views are rendered here with the same wire shape:
{
    "error": {
        "kind": "BAD_REQUEST",
        "message": "Method not allowed",
        "detail": {"httpStatus": 405, "allowedMethods": ["GET", "OPTIONS"]}
    }
}

The response status is always the one the kind maps to (400 above); the
host's own status is kept in detail.httpStatus when the two differ.
"""

import logging

from flask import Flask, g
from werkzeug.exceptions import HTTPException, MethodNotAllowed

from ..errors import STATUS_BY_KIND, AppError, error_response, internal_error, kind_for_status


logger = logging.getLogger('hubkit.middleware.error')

# Werkzeug's default descriptions are prose paragraphs
HOST_MESSAGES = {
    405: "Method not allowed",
    413: "Request body too large",
}


def _correlation_id():
    return getattr(g, 'correlation_id', None)


def host_error(error: HTTPException) -> AppError:
    """Translate a Werkzeug HTTPException into an AppError of the matching kind."""
    kind = kind_for_status(error.code)
    detail = {}
    if STATUS_BY_KIND[kind] != error.code:
        detail["httpStatus"] = error.code
    if isinstance(error, MethodNotAllowed) and error.valid_methods:
        detail["allowedMethods"] = sorted(error.valid_methods)
    message = HOST_MESSAGES.get(error.code, error.description)
    return AppError(kind, message, detail or None)


def setup_error_handlers(app: Flask) -> None:
    """
    Register the envelope renderers for AppError, HTTPException and any
    other exception.
    """

    @app.errorhandler(AppError)
    def handle_app_error(error):
        return error_response(error, _correlation_id())

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return error_response(host_error(error), _correlation_id())

    @app.errorhandler(Exception)
    def handle_generic_error(error):
        correlation_id = _correlation_id()
        logger.exception(
            f"Unhandled error: {error}",
            extra={
                "event": "unhandled_error",
                "correlation_id": correlation_id,
                "error_type": type(error).__name__,
            }
        )
        return error_response(internal_error(), correlation_id)
