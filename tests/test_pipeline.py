"""
Request pipeline behaviour: stage order, short-circuiting, body/query/path
validation and handler result handling.
"""

import logging
from datetime import timedelta
from typing import List, Optional

import pytest
from flask import Flask, Response, request
from pydantic import BaseModel, Field, model_validator

from hubkit import (
    CORRELATION_ID_HEADER,
    ContractDefinitionError,
    ContractDescriptor,
    RequestPipeline,
    Role,
    api_contract,
    bind_routes,
)
from hubkit.errors import conflict, not_found


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class LoginBody(BaseModel):
    email: str = Field(..., pattern=EMAIL_PATTERN)
    password: str


class ItemBody(BaseModel):
    a: str
    b: Optional[int] = None


class SearchQuery(BaseModel):
    q: str
    limit: int = 10
    tags: List[str] = []


class ItemPath(BaseModel):
    item_id: int


class FilePath(BaseModel):
    file_id: str


class SignupBody(BaseModel):
    password: str
    confirm: str

    @model_validator(mode="before")
    @classmethod
    def strip_password(cls, data):
        data["password"] = data["password"].strip()
        return data


class ItemOut(BaseModel):
    id: int
    name: str


class TestLogin:
    """End-to-end login contract."""

    @pytest.fixture
    def client(self, registry, make_client):
        @registry.route("POST", "/auth/login", summary="Login", body_schema=LoginBody)
        def login(ctx):
            return ctx.validated_body

        return make_client()

    def test_valid_body_is_echoed(self, client):
        response = client.post("/auth/login", json={"email": "a@b.com", "password": "x"})

        assert response.status_code == 201
        assert response.get_json() == {"email": "a@b.com", "password": "x"}

    def test_invalid_body_names_both_fields(self, client):
        response = client.post("/auth/login", json={"email": "not-an-email"})

        assert response.status_code == 422
        error = response.get_json()["error"]
        assert error["kind"] == "VALIDATION_ERROR"
        assert error["message"] == "Validation failed"
        fields = {failure["field"] for failure in error["detail"]}
        assert {"email", "password"} <= fields

    def test_empty_body_reports_every_required_field(self, client):
        response = client.post("/auth/login", data="", content_type="application/json")

        assert response.status_code == 422
        assert [f["field"] for f in response.get_json()["error"]["detail"]] == ["email", "password"]

    def test_malformed_json(self, client):
        response = client.post("/auth/login", data="{not json", content_type="application/json")

        assert response.status_code == 400
        assert response.get_json()["error"] == {"kind": "BAD_REQUEST", "message": "Malformed JSON body"}


class TestAuthShortCircuit:
    """Authentication and authorization failures never reach the handler."""

    @pytest.fixture
    def calls(self):
        return []

    @pytest.fixture
    def client(self, registry, make_client, calls):
        @registry.route("POST", "/items", auth_required=True, body_schema=ItemBody)
        def create_item(ctx):
            calls.append(ctx)
            return {"a": ctx.validated_body.a, "user": ctx.claims.subject}

        @registry.route("DELETE", "/items/{item_id}", auth_required=True,
                        required_roles=(Role.ADMIN,), path_schema=ItemPath)
        def delete_item(ctx):
            calls.append(ctx)
            return None

        return make_client()

    @pytest.mark.parametrize("headers", [
        {},
        {"Authorization": ""},
        {"Authorization": "Bearer"},
        {"Authorization": "Basic dXNlcjpwYXNz"},
        {"Authorization": "Bearer not.a.jwt"},
    ])
    def test_missing_or_invalid_token(self, client, calls, headers):
        response = client.post("/items", json={"a": "x"}, headers=headers)

        assert response.status_code == 401
        error = response.get_json()["error"]
        assert error["kind"] == "UNAUTHORIZED"
        assert "detail" not in error
        assert CORRELATION_ID_HEADER in response.headers
        assert calls == []

    def test_auth_checked_before_body(self, client, calls):
        response = client.post("/items", data="{not json", content_type="application/json")

        assert response.status_code == 401
        assert calls == []

    def test_valid_token(self, client, calls, auth_headers):
        response = client.post("/items", json={"a": "x"}, headers=auth_headers(subject="user-7"))

        assert response.status_code == 201
        assert response.get_json() == {"a": "x", "user": "user-7"}
        assert len(calls) == 1
        assert calls[0].claims.role is Role.MEMBER

    def test_expired_token(self, client, calls, verifier):
        token = verifier.issue_token("user-1", expires_in=timedelta(seconds=-5))
        response = client.post("/items", json={"a": "x"}, headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.get_json()["error"]["message"] == "Token has expired"
        assert calls == []

    def test_member_forbidden_on_admin_route(self, client, calls, auth_headers):
        response = client.delete("/items/3", headers=auth_headers(Role.MEMBER))

        assert response.status_code == 403
        assert response.get_json()["error"]["kind"] == "FORBIDDEN"
        assert calls == []

    def test_token_without_role_forbidden(self, client, calls, auth_headers):
        response = client.delete("/items/3", headers=auth_headers(role=None))

        assert response.status_code == 403
        assert calls == []

    def test_admin_allowed(self, client, calls, auth_headers):
        response = client.delete("/items/3", headers=auth_headers(Role.ADMIN))

        assert response.status_code == 204
        assert calls[0].validated_path == ItemPath(item_id=3)

    def test_admin_satisfies_member_route(self, client, calls, auth_headers):
        response = client.post("/items", json={"a": "x"}, headers=auth_headers(Role.ADMIN))
        assert response.status_code == 201


class TestBodyWithBeforeValidator:

    @pytest.fixture
    def client(self, registry, make_client):
        @registry.route("POST", "/signups", body_schema=SignupBody)
        def signup(ctx):
            return {"password": ctx.validated_body.password}

        return make_client()

    def test_valid_body_reaches_handler(self, client):
        response = client.post("/signups", json={"password": " x ", "confirm": "x"})

        assert response.status_code == 201
        assert response.get_json() == {"password": "x"}

    def test_missing_field_is_422(self, client):
        response = client.post("/signups", json={"confirm": "x"})

        assert response.status_code == 422
        assert [f["field"] for f in response.get_json()["error"]["detail"]] == ["password"]

    def test_documented_as_required(self, client):
        doc = client.get("/openapi.json").get_json()
        schema = doc["paths"]["/signups"]["post"]["requestBody"]["content"]["application/json"]["schema"]

        assert schema["required"] == ["password", "confirm"]

    def test_validator_crash_on_complete_body_is_500(self, client, caplog):
        with caplog.at_level(logging.ERROR, logger="hubkit.pipeline"):
            response = client.post(
                "/signups", json={"password": 5, "confirm": "x"}, headers={CORRELATION_ID_HEADER: "abc-123"},
            )

        assert response.status_code == 500
        assert response.get_json() == {"error": {"kind": "INTERNAL_ERROR", "message": "Internal server error"}}
        assert response.headers[CORRELATION_ID_HEADER] == "abc-123"
        (record,) = [r for r in caplog.records if getattr(r, "event", None) == "stage_exception"]
        assert record.stage == "parse_body"


class TestStageOrder:

    @staticmethod
    def _recording_pipeline(registry, verifier, seen):
        pipeline = RequestPipeline(registry, verifier=verifier)

        def record(name, stage):
            def wrapped(contract, req, ctx):
                seen.append(name)
                return stage(contract, req, ctx)
            return wrapped

        pipeline.stages = [(name, record(name, stage)) for name, stage in pipeline.stages]
        return pipeline

    def test_all_stages_run_in_order(self, registry, verifier):
        seen = []
        pipeline = self._recording_pipeline(registry, verifier, seen)
        contract = ContractDescriptor("POST", "/items", auth_required=True, body_schema=ItemBody)
        token = verifier.issue_token("user-1", role=Role.MEMBER)

        app = Flask(__name__)
        with app.test_request_context("/items", method="POST", json={"a": "x"},
                                      headers={"Authorization": f"Bearer {token}"}):
            response = pipeline.run(contract, lambda ctx: seen.append("handler"), request)

        assert response.status_code == 204
        assert seen == list(RequestPipeline.STAGES) + ["handler"]

    def test_first_failure_stops_the_pipeline(self, registry, verifier):
        seen = []
        pipeline = self._recording_pipeline(registry, verifier, seen)
        contract = ContractDescriptor("POST", "/items", auth_required=True, body_schema=ItemBody)

        app = Flask(__name__)
        with app.test_request_context("/items", method="POST", json={}):
            response = pipeline.run(contract, lambda ctx: seen.append("handler"), request)

        assert response.status_code == 401
        assert seen == ["correlate", "authenticate"]

    def test_dispatch_unknown_contract(self, registry):
        pipeline = RequestPipeline(registry)

        app = Flask(__name__)
        with app.test_request_context("/missing", headers={CORRELATION_ID_HEADER: "abc-123"}):
            response = pipeline.dispatch("GET", "/missing", request)

        assert response.status_code == 404
        assert response.headers[CORRELATION_ID_HEADER] == "abc-123"


class TestQueryAndPath:

    @pytest.fixture
    def client(self, registry, make_client):
        @registry.route("GET", "/search", query_schema=SearchQuery)
        def search(ctx):
            return ctx.validated_query

        @registry.route("GET", "/items/{item_id}", path_schema=ItemPath)
        def get_item(ctx):
            return {"id": ctx.validated_path.item_id, "raw": ctx.path_params["item_id"]}

        return make_client()

    def test_query_parsed(self, client):
        response = client.get("/search?q=shoes&limit=5&tags=red&tags=blue")

        assert response.status_code == 200
        assert response.get_json() == {"q": "shoes", "limit": 5, "tags": ["red", "blue"]}

    def test_query_defaults(self, client):
        assert client.get("/search?q=shoes").get_json() == {"q": "shoes", "limit": 10, "tags": []}

    def test_invalid_query(self, client):
        response = client.get("/search?limit=abc")

        assert response.status_code == 422
        error = response.get_json()["error"]
        assert error["message"] == "Invalid query parameters"
        assert {f["field"] for f in error["detail"]} == {"q", "limit"}

    def test_path_parsed(self, client):
        response = client.get("/items/42")

        assert response.status_code == 200
        assert response.get_json() == {"id": 42, "raw": "42"}

    def test_invalid_path(self, client):
        response = client.get("/items/abc")

        assert response.status_code == 422
        error = response.get_json()["error"]
        assert error["message"] == "Invalid path parameters"
        assert error["detail"][0]["field"] == "item_id"


class TestHandlerResults:

    @pytest.fixture
    def client(self, registry, make_client):
        @registry.route("GET", "/model")
        def model(ctx):
            return ItemOut(id=1, name="one")

        @registry.route("GET", "/models")
        def models(ctx):
            return [ItemOut(id=1, name="one"), ItemOut(id=2, name="two")]

        @registry.route("POST", "/accepted")
        def accepted(ctx):
            return {"queued": True}, 202

        @registry.route("GET", "/headers")
        def with_headers(ctx):
            return {"ok": True}, 200, {"X-Extra": "1"}

        @registry.route("PUT", "/empty")
        def empty(ctx):
            return None

        @registry.route("GET", "/raw")
        def raw(ctx):
            return Response("plain text", mimetype="text/plain")

        @registry.route("GET", "/conflict")
        def raises_conflict(ctx):
            raise conflict("Item already exists", {"id": 1})

        @registry.route("GET", "/not-found")
        def raises_not_found(ctx):
            raise not_found("Item 9 not found")

        @registry.route("GET", "/boom")
        def boom(ctx):
            raise RuntimeError("database password is hunter2")

        return make_client()

    def test_model_serialized(self, client):
        assert client.get("/model").get_json() == {"id": 1, "name": "one"}

    def test_list_of_models(self, client):
        assert client.get("/models").get_json() == [{"id": 1, "name": "one"}, {"id": 2, "name": "two"}]

    def test_status_tuple(self, client):
        response = client.post("/accepted")
        assert response.status_code == 202
        assert response.get_json() == {"queued": True}

    def test_headers_tuple(self, client):
        response = client.get("/headers")
        assert response.headers["X-Extra"] == "1"

    def test_none_is_no_content(self, client):
        response = client.put("/empty")
        assert response.status_code == 204
        assert response.data == b""

    def test_response_passthrough(self, client):
        response = client.get("/raw")
        assert response.data == b"plain text"
        assert CORRELATION_ID_HEADER in response.headers

    def test_app_error_passes_through(self, client):
        response = client.get("/conflict")

        assert response.status_code == 409
        assert response.get_json() == {
            "error": {"kind": "CONFLICT", "message": "Item already exists", "detail": {"id": 1}}
        }

    def test_not_found_from_handler(self, client):
        response = client.get("/not-found")
        assert response.status_code == 404
        assert response.get_json()["error"]["message"] == "Item 9 not found"

    def test_unexpected_exception_is_generic_500(self, client, caplog):
        with caplog.at_level(logging.ERROR, logger="hubkit.pipeline"):
            response = client.get("/boom", headers={CORRELATION_ID_HEADER: "abc-123"})

        assert response.status_code == 500
        assert response.get_json() == {
            "error": {"kind": "INTERNAL_ERROR", "message": "Internal server error"}
        }
        assert b"hunter2" not in response.data
        assert response.headers[CORRELATION_ID_HEADER] == "abc-123"
        assert any(record.exc_info for record in caplog.records)


class TestBinding:

    def test_contract_without_handler(self, registry, make_client):
        registry.register(ContractDescriptor("GET", "/orphan"))

        with pytest.raises(ContractDefinitionError):
            make_client()

    def test_auth_contract_without_secret(self, registry, make_client):
        from hubkit.config import Config

        class NoSecret(Config):
            JWT_SECRET = ""

        @registry.route("GET", "/private", auth_required=True)
        def private(ctx):
            return {}

        with pytest.raises(ContractDefinitionError):
            make_client(NoSecret)

    def test_api_contract_decorator(self, registry, verifier):
        registry.register(ContractDescriptor(
            "POST", "/files/{file_id}/notes", body_schema=ItemBody, path_schema=FilePath,
        ))
        pipeline = RequestPipeline(registry, verifier=verifier)
        app = Flask(__name__)

        @app.route("/files/<file_id>/notes", methods=["POST"])
        @api_contract(pipeline, "POST", "/files/{file_id}/notes")
        def add_note(ctx):
            return {"file": ctx.path_params["file_id"], "a": ctx.validated_body.a}

        client = app.test_client()
        assert client.post("/files/f1/notes", json={"a": "x"}).get_json() == {"file": "f1", "a": "x"}
        assert client.post("/files/f1/notes", json={}).status_code == 422

    def test_api_contract_requires_registration(self, registry):
        pipeline = RequestPipeline(registry)
        with pytest.raises(ContractDefinitionError):
            api_contract(pipeline, "GET", "/unregistered")

    def test_bind_routes_directly(self, registry, verifier):
        @registry.route("GET", "/ping")
        def ping(ctx):
            return {"pong": True}

        app = Flask(__name__)
        bind_routes(app, RequestPipeline(registry, verifier=verifier))

        response = app.test_client().get("/ping")
        assert response.get_json() == {"pong": True}
        assert CORRELATION_ID_HEADER in response.headers
