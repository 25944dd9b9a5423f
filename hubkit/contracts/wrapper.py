"""
Request pipeline - applies contract enforcement around handlers.

Usage:
    registry = ContractRegistry()

    @registry.route("POST", "/auth/login", body_schema=LoginBody)
    def login(ctx):
        return {"email": ctx.validated_body.email}

    pipeline = RequestPipeline(registry, verifier=AuthVerifier(auth_config))
    bind_routes(app, pipeline)

Stages run in a fixed order; the first one to return an AppError ends the
request and nothing after it runs, including the handler:
1. correlate     - resolve the correlation ID
2. authenticate  - bearer token -> Claims (auth contracts only)
3. authorize     - role check (contracts with required roles only)
4. parse_body    - multipart (file fields) OR JSON (body schema)
5. parse_query   - query string against the query schema
6. parse_path    - route parameters against the path schema
Then the handler is invoked, and the correlation header is attached to
whatever response came out.
"""

import functools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from flask import Flask, Response, current_app, g, has_app_context, jsonify, request as flask_request
from pydantic import BaseModel
from werkzeug.exceptions import HTTPException
from werkzeug.wrappers import Request

from ..auth import AuthVerifier, Claims, check_role, extract_bearer_token
from ..errors import (
    AppError,
    ContractDefinitionError,
    bad_request,
    error_response,
    internal_error,
    not_found,
    unauthorized,
    validation_error,
)
from ..middleware.request_id import CORRELATION_ID_HEADER, correlation_headers, resolve_correlation_id
from .introspect import SchemaIntrospector
from .multipart import MultipartError, UploadedFile, parse_multipart
from .registry import PATH_PARAM, ContractDescriptor, ContractRegistry


logger = logging.getLogger('hubkit.pipeline')


@dataclass
class RequestContext:
    """Everything the pipeline established about one request."""
    correlation_id: str = ''
    request: Optional[Request] = None
    claims: Optional[Claims] = None
    validated_body: Any = None
    validated_query: Any = None
    validated_path: Any = None
    uploaded_files: List[UploadedFile] = field(default_factory=list)
    form_fields: Dict[str, str] = field(default_factory=dict)
    validated_form: Any = None
    path_params: Dict[str, Any] = field(default_factory=dict)

    def files_for(self, field_name: str) -> List[UploadedFile]:
        return [f for f in self.uploaded_files if f.field_name == field_name]

    def downstream_headers(self) -> Dict[str, str]:
        """Headers that carry the correlation ID to downstream calls."""
        return correlation_headers(self.correlation_id)


Stage = Callable[[ContractDescriptor, Request, RequestContext], Optional[AppError]]
Handler = Callable[[RequestContext], Any]


class RequestPipeline:
    """Runs the contract stages for a request, then the handler."""

    STAGES = (
        "correlate",
        "authenticate",
        "authorize",
        "parse_body",
        "parse_query",
        "parse_path",
    )

    def __init__(
        self,
        registry: ContractRegistry,
        introspector: Optional[SchemaIntrospector] = None,
        verifier: Optional[AuthVerifier] = None,
    ):
        self.registry = registry
        self.introspector = introspector or SchemaIntrospector()
        self.verifier = verifier
        self.stages: List[Tuple[str, Stage]] = [
            (name, getattr(self, f"_{name}")) for name in self.STAGES
        ]

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def dispatch(
        self,
        method: str,
        path: str,
        request: Request,
        path_params: Optional[Dict[str, Any]] = None,
    ) -> Response:
        """Look up the contract and handler for (method, path) and run them."""
        contract = self.registry.get(method, path)
        if contract is None:
            correlation_id = resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
            return error_response(not_found(f"No contract for {method.upper()} {path}"), correlation_id)
        return self.run(contract, self.registry.handler_for(method, path), request, path_params)

    def run(
        self,
        contract: ContractDescriptor,
        handler: Optional[Handler],
        request: Request,
        path_params: Optional[Dict[str, Any]] = None,
    ) -> Response:
        """Execute every stage, then the handler, for one request."""
        ctx = RequestContext(request=request, path_params=dict(path_params or {}))

        error = None
        for name, stage in self.stages:
            try:
                error = stage(contract, request, ctx)
            except HTTPException:
                raise
            except AppError as e:
                error = e
            except Exception:
                logger.exception(
                    f"Stage {name} failed for {contract.key_str}",
                    extra={
                        "event": "stage_exception",
                        "endpoint": contract.key_str,
                        "stage": name,
                        "correlation_id": ctx.correlation_id,
                    },
                )
                error = internal_error()
            if error is not None:
                self._log_rejection(contract, ctx, name, error)
                break

        if error is None:
            response = self._invoke(contract, handler, ctx)
        else:
            response = error_response(error)

        response.headers[CORRELATION_ID_HEADER] = ctx.correlation_id
        return response

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _correlate(self, contract, request, ctx) -> Optional[AppError]:
        # the request-id middleware already resolved one for this request
        existing = getattr(g, 'correlation_id', None) if has_app_context() else None
        ctx.correlation_id = existing or resolve_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        if has_app_context():
            g.correlation_id = ctx.correlation_id
        return None

    def _authenticate(self, contract, request, ctx) -> Optional[AppError]:
        if not contract.auth_required:
            return None

        if self.verifier is None:
            logger.error(
                f"Auth required but no verifier configured: {contract.key_str} "
                f"correlation_id={ctx.correlation_id}"
            )
            return internal_error()

        token = extract_bearer_token(request.headers.get('Authorization'))
        if token is None:
            return unauthorized("Missing or malformed authorization header")

        try:
            ctx.claims = self.verifier.verify(token)
        except AppError as e:
            return e
        return None

    def _authorize(self, contract, request, ctx) -> Optional[AppError]:
        if not contract.required_roles or ctx.claims is None:
            return None
        try:
            check_role(ctx.claims, contract.required_roles)
        except AppError as e:
            return e
        return None

    def _parse_body(self, contract, request, ctx) -> Optional[AppError]:
        if contract.file_fields:
            return self._parse_multipart_body(contract, request, ctx)
        if contract.body_schema is None:
            return None

        raw = request.get_data(cache=True)
        if not raw.strip():
            payload = {}
        else:
            try:
                payload = json.loads(raw)
            except ValueError:
                return bad_request("Malformed JSON body")

        outcome = self.introspector.validate(contract.body_schema, payload)
        if not outcome.ok:
            return validation_error("Validation failed", outcome.failures)
        ctx.validated_body = outcome.value
        return None

    def _parse_multipart_body(self, contract, request, ctx) -> Optional[AppError]:
        max_length = current_app.config.get('MAX_CONTENT_LENGTH') if has_app_context() else None
        try:
            uploads, form_fields = parse_multipart(request, max_content_length=max_length)
        except MultipartError as e:
            return bad_request(str(e))

        uploads = [upload for upload in uploads if self.introspector.is_upload(upload)]
        sent = {upload.field_name for upload in uploads}
        failures = [
            {"field": spec.name, "message": "File required", "type": "missing_file"}
            for spec in contract.file_fields
            if spec.required and spec.name not in sent
        ]

        validated_form = None
        if contract.form_fields_schema is not None:
            outcome = self.introspector.validate(contract.form_fields_schema, form_fields)
            failures.extend(outcome.failures)
            validated_form = outcome.value

        if failures:
            return validation_error("Validation failed", failures)

        ctx.uploaded_files = uploads
        ctx.form_fields = form_fields
        ctx.validated_form = validated_form
        return None

    def _parse_query(self, contract, request, ctx) -> Optional[AppError]:
        schema = contract.query_schema
        if schema is None:
            return None

        raw = {}
        for key in request.args.keys():
            if self._is_array_field(schema, key):
                raw[key] = request.args.getlist(key)
            else:
                raw[key] = request.args.get(key)

        outcome = self.introspector.validate(schema, raw)
        if not outcome.ok:
            return validation_error("Invalid query parameters", outcome.failures)
        ctx.validated_query = outcome.value
        return None

    def _parse_path(self, contract, request, ctx) -> Optional[AppError]:
        if contract.path_schema is None:
            return None
        outcome = self.introspector.validate(contract.path_schema, ctx.path_params)
        if not outcome.ok:
            return validation_error("Invalid path parameters", outcome.failures)
        ctx.validated_path = outcome.value
        return None

    def _is_array_field(self, schema, key: str) -> bool:
        try:
            return self.introspector.primitive_type(schema, key) == "array"
        except KeyError:
            return False

    # ------------------------------------------------------------------
    # Handler
    # ------------------------------------------------------------------

    def _invoke(self, contract: ContractDescriptor, handler: Optional[Handler], ctx: RequestContext) -> Response:
        if handler is None:
            logger.error(f"No handler attached to {contract.key_str}")
            return error_response(internal_error())

        try:
            result = handler(ctx)
            response = _make_response(result, contract.success_status)
        except AppError as e:
            logger.info(
                f"Handler error: {contract.key_str} kind={e.kind.value} "
                f"correlation_id={ctx.correlation_id}"
            )
            return error_response(e)
        except Exception:
            logger.exception(
                f"Handler error for {contract.key_str}",
                extra={
                    "event": "handler_exception",
                    "endpoint": contract.key_str,
                    "correlation_id": ctx.correlation_id,
                },
            )
            return error_response(internal_error())

        logger.debug(
            f"{contract.key_str} completed {response.status_code} "
            f"correlation_id={ctx.correlation_id}"
        )
        return response

    def _log_rejection(self, contract, ctx, stage: str, error: AppError) -> None:
        logger.info(
            f"Request rejected: endpoint={contract.key_str} stage={stage} "
            f"kind={error.kind.value} correlation_id={ctx.correlation_id}",
            extra={
                "event": "contract_rejected",
                "endpoint": contract.key_str,
                "stage": stage,
                "correlation_id": ctx.correlation_id,
            }
        )


def _serialize(body: Any) -> Any:
    if isinstance(body, BaseModel):
        return body.model_dump(mode='json', by_alias=True)
    if isinstance(body, list):
        return [_serialize(item) for item in body]
    return body


def _make_response(result: Any, default_status: int) -> Response:
    """
    Build a Response from a handler result.

    Accepts a Response, a JSON-able body or pydantic model, None (204), or a
    (body, status) / (body, status, headers) tuple.
    """
    if isinstance(result, Response):
        return result

    status = default_status
    headers: Dict[str, str] = {}
    if isinstance(result, tuple):
        if len(result) == 3:
            body, status, headers = result
        elif len(result) == 2:
            body, status = result
        else:
            body = result[0]
    elif result is None:
        return Response(status=204)
    else:
        body = result

    if isinstance(body, Response):
        response = body
    elif body is None:
        response = Response()
    else:
        response = jsonify(_serialize(body))
    response.status_code = status
    response.headers.update(headers)
    return response



def flask_rule(path: str) -> str:
    """Convert an OpenAPI-style path ("/users/{id}") to a Flask rule ("/users/<id>")."""
    return PATH_PARAM.sub(r'<\1>', path)


def api_contract(pipeline: RequestPipeline, method: str, path: str):
    """
    Decorator that enforces a registered contract on a Flask view.

    The view receives the RequestContext; route parameters are available as
    ctx.path_params.

    Usage:
        @app.route("/files/<file_id>", methods=["GET"])
        @api_contract(pipeline, "GET", "/files/{file_id}")
        def get_file(ctx):
            ...

    Raises:
        ContractDefinitionError: If no contract is registered for (method, path)
    """
    contract = pipeline.registry.get(method, path)
    if contract is None:
        raise ContractDefinitionError(f"No contract registered for {method.upper()} {path}")

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(**kwargs) -> Response:
            return pipeline.run(contract, fn, flask_request._get_current_object(), kwargs)
        return wrapper
    return decorator


def bind_routes(app: Flask, pipeline: RequestPipeline) -> None:
    """
    Add a Flask URL rule for every registered contract.

    Raises:
        ContractDefinitionError: a contract has no handler, or requires auth
        while the pipeline has no verifier
    """
    for contract in pipeline.registry:
        handler = pipeline.registry.handler_for(contract.method, contract.path)
        if handler is None:
            raise ContractDefinitionError(f"No handler attached to {contract.key_str}")
        if contract.auth_required and pipeline.verifier is None:
            raise ContractDefinitionError(
                f"{contract.key_str} requires auth but no JWT secret is configured"
            )

        endpoint = f"{contract.method.lower()}:{contract.path}"
        app.add_url_rule(
            flask_rule(contract.path),
            endpoint=endpoint,
            view_func=_make_view(pipeline, contract, handler),
            methods=[contract.method],
        )
        logger.debug(f"Bound {contract.key_str} -> {flask_rule(contract.path)}")


def _make_view(pipeline: RequestPipeline, contract: ContractDescriptor, handler: Handler) -> Callable:
    def view(**kwargs) -> Response:
        return pipeline.run(contract, handler, flask_request._get_current_object(), kwargs)
    return view
