"""
Flask Application Factory

Wires a ContractRegistry into a Flask app:
- Correlation ID, error envelope and request logging middleware
- One URL rule per registered contract, enforced by the RequestPipeline
- GET /health and GET /openapi.json
"""

import logging

from flask import Flask, jsonify
from flask_cors import CORS

from .auth import AuthVerifier
from .config import Config, auth_config_from
from .contracts.introspect import SchemaIntrospector
from .contracts.registry import ContractRegistry
from .contracts.wrapper import RequestPipeline, bind_routes
from .health import register_health
from .middleware import (
    CORRELATION_ID_HEADER,
    setup_error_handlers,
    setup_request_id_middleware,
    setup_request_logging_middleware,
)
from .openapi import DocumentSynthesizer, document_info_from


logger = logging.getLogger('hubkit.app')


def create_app(registry: ContractRegistry, config=Config) -> Flask:
    """
    Build a Flask app serving every contract in the registry.

    The registry is sealed once routes are bound.

    Raises:
        ContractDefinitionError: a contract requires auth and JWT_SECRET is
        not configured, or a contract has no handler
    """
    app = Flask(__name__)
    app.config.from_object(config)

    CORS(app,
         origins=app.config.get('CORS_ORIGINS', ['*']),
         allow_headers=["Content-Type", "Authorization", CORRELATION_ID_HEADER],
         expose_headers=[CORRELATION_ID_HEADER],
         supports_credentials=False)

    # === MIDDLEWARE ===
    setup_request_id_middleware(app)
    setup_request_logging_middleware(app)
    setup_error_handlers(app)

    register_health(registry)

    auth_config = auth_config_from(config)
    verifier = AuthVerifier(auth_config) if auth_config else None
    introspector = SchemaIntrospector()

    pipeline = RequestPipeline(registry, introspector=introspector, verifier=verifier)
    bind_routes(app, pipeline)

    synthesizer = DocumentSynthesizer(registry, document_info_from(config), introspector)

    @app.route("/openapi.json", methods=["GET"])
    def openapi_document():
        return jsonify(synthesizer.document())

    registry.seal()
    # schema component conflicts fail here, at startup
    synthesizer.document()
    logger.info(f"Bound {len(registry)} contracts")

    app.extensions['hubkit'] = {
        'registry': registry,
        'pipeline': pipeline,
        'synthesizer': synthesizer,
        'verifier': verifier,
    }
    return app
