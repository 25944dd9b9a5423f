"""
OpenAPI document synthesis from the contract registry.

The document is derived from the same ContractDescriptors the pipeline
enforces, and every `required` list comes from SchemaIntrospector, so the
documented requiredness and the enforced requiredness are one rule.

Failure responses that follow from the contract itself are synthesized rather
than declared:
- 401 when the contract requires auth
- 403 when it also requires roles
- 422 when it has a JSON body schema or file fields
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .contracts.introspect import SchemaIntrospector
from .errors import ContractDefinitionError
from .contracts.registry import ContractDescriptor, ContractRegistry


OPENAPI_VERSION = "3.0.3"

BEARER_SCHEME_NAME = "bearerAuth"
BEARER_SCHEME = {
    "type": "http",
    "scheme": "bearer",
    "bearerFormat": "JWT",
}

UNAUTHORIZED_DESCRIPTION = "Unauthorized - Authentication required"
FORBIDDEN_DESCRIPTION = "Forbidden - Insufficient permissions"
VALIDATION_DESCRIPTION = "Validation error"


@dataclass(frozen=True)
class DocumentInfo:
    """Top-level document metadata."""
    title: str
    version: str
    description: str = ""
    servers: Tuple[Dict[str, str], ...] = field(default_factory=tuple)


def document_info_from(config) -> DocumentInfo:
    """Build DocumentInfo from a Config-like object."""
    return DocumentInfo(
        title=getattr(config, 'API_TITLE', 'API'),
        version=getattr(config, 'API_VERSION', '1.0.0'),
        description=getattr(config, 'API_DESCRIPTION', ''),
        servers=tuple({"url": url} for url in getattr(config, 'API_SERVERS', [])),
    )


class DocumentSynthesizer:
    """Walks a ContractRegistry and produces one OpenAPI document."""

    def __init__(
        self,
        registry: ContractRegistry,
        info: DocumentInfo,
        introspector: Optional[SchemaIntrospector] = None,
    ):
        self.registry = registry
        self.info = info
        self.introspector = introspector or SchemaIntrospector()
        self._cached: Optional[Dict[str, Any]] = None
        self._cached_revision: Optional[int] = None

    def document(self) -> Dict[str, Any]:
        """Cached document, rebuilt when the registry changed since last build."""
        if self._cached is None or self._cached_revision != self.registry.revision:
            self._cached = self.build()
            self._cached_revision = self.registry.revision
        return copy.deepcopy(self._cached)

    def to_json(self) -> str:
        return json.dumps(self.document(), indent=2)

    def build(self) -> Dict[str, Any]:
        """Synthesize a fresh document. Path order follows registration order."""
        schemas: Dict[str, Any] = {}
        paths: Dict[str, Dict[str, Any]] = {}

        for contract in self.registry:
            operation = self._operation(contract, schemas)
            paths.setdefault(contract.path, {})[contract.method.lower()] = operation

        info = {"title": self.info.title, "version": self.info.version}
        if self.info.description:
            info["description"] = self.info.description

        components: Dict[str, Any] = {
            "securitySchemes": {BEARER_SCHEME_NAME: dict(BEARER_SCHEME)},
        }
        if schemas:
            components["schemas"] = schemas

        return {
            "openapi": OPENAPI_VERSION,
            "info": info,
            "servers": [dict(server) for server in self.info.servers],
            "paths": paths,
            "components": components,
        }

    # ------------------------------------------------------------------

    def _operation(self, contract: ContractDescriptor, schemas: Dict[str, Any]) -> Dict[str, Any]:
        operation: Dict[str, Any] = {"summary": contract.summary}
        if contract.description:
            operation["description"] = contract.description
        if contract.tags:
            operation["tags"] = list(contract.tags)
        if contract.auth_required:
            operation["security"] = [{BEARER_SCHEME_NAME: []}]

        parameters = self._parameters(contract, schemas)
        if parameters:
            operation["parameters"] = parameters

        request_body = self._request_body(contract, schemas)
        if request_body is not None:
            operation["requestBody"] = request_body

        operation["responses"] = self._responses(contract, schemas)
        return operation

    def _model_schema(self, model, schemas: Dict[str, Any]) -> Dict[str, Any]:
        doc, definitions = self.introspector.object_schema(model)
        for name, definition in definitions.items():
            existing = schemas.setdefault(name, definition)
            if existing != definition:
                raise ContractDefinitionError(
                    f"Schema component '{name}' is defined differently by two models "
                    f"(second seen via {model.__module__}.{model.__qualname__})"
                )
        return doc

    def _parameters(self, contract: ContractDescriptor, schemas: Dict[str, Any]) -> List[Dict[str, Any]]:
        parameters = []
        for location, model in (("query", contract.query_schema), ("path", contract.path_schema)):
            if model is None:
                continue
            doc = self._model_schema(model, schemas)
            required = set(doc.get("required", []))
            for name, prop in doc.get("properties", {}).items():
                param: Dict[str, Any] = {
                    "name": name,
                    "in": location,
                    # Path parameters are always required in OpenAPI
                    "required": location == "path" or name in required,
                    "schema": prop,
                }
                if prop.get("description"):
                    param["description"] = prop["description"]
                parameters.append(param)
        return parameters

    def _request_body(self, contract: ContractDescriptor, schemas: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if contract.file_fields:
            return {
                "required": True,
                "content": {
                    "multipart/form-data": {"schema": self._multipart_schema(contract, schemas)},
                },
            }
        if contract.body_schema is not None:
            return {
                "required": True,
                "content": {
                    "application/json": {"schema": self._model_schema(contract.body_schema, schemas)},
                },
            }
        return None

    def _multipart_schema(self, contract: ContractDescriptor, schemas: Dict[str, Any]) -> Dict[str, Any]:
        """
        Union of file placeholders and form-field properties.

        The required list is the union of both sources: file requiredness
        from the FileFieldSpecs, form requiredness from the introspector.
        """
        properties: Dict[str, Any] = {}
        required: List[str] = []

        for spec in contract.file_fields:
            properties[spec.name] = self.introspector.file_property(spec)
            if spec.required:
                required.append(spec.name)

        if contract.form_fields_schema is not None:
            form_doc = self._model_schema(contract.form_fields_schema, schemas)
            properties.update(form_doc.get("properties", {}))
            for name in self.introspector.required_fields(contract.form_fields_schema):
                if name not in required:
                    required.append(name)

        schema: Dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        return schema

    def _responses(self, contract: ContractDescriptor, schemas: Dict[str, Any]) -> Dict[str, Any]:
        responses: Dict[str, Any] = {}
        for status, spec in contract.responses.items():
            entry: Dict[str, Any] = {"description": spec.description}
            if spec.schema is not None:
                entry["content"] = {
                    "application/json": {"schema": self._model_schema(spec.schema, schemas)},
                }
            responses[str(status)] = entry

        if contract.auth_required:
            responses.setdefault("401", {"description": UNAUTHORIZED_DESCRIPTION})
            if contract.required_roles:
                responses.setdefault("403", {"description": FORBIDDEN_DESCRIPTION})
        if contract.has_request_body:
            responses.setdefault("422", {"description": VALIDATION_DESCRIPTION})
        return responses
