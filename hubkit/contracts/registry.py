"""
Contract Registry - Single source of truth for endpoint contracts.

Each endpoint has one ContractDescriptor:
- Auth: whether a bearer token is required, and which roles
- Request: body (JSON) OR file fields (multipart), query and path schemas
- Responses: one ResponseSpec per status code

The same registry is read by the request pipeline (lookup by method + path)
and by the OpenAPI synthesizer (iteration in registration order).
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Type

from pydantic import BaseModel

from ..auth import Role
from ..errors import ContractDefinitionError


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

PATH_PARAM = re.compile(r'\{(\w+)\}')


def path_params(path: str) -> List[str]:
    """Placeholder names in an OpenAPI-style path, in order."""
    return PATH_PARAM.findall(path)


@dataclass(frozen=True)
class FileFieldSpec:
    """One uploadable-file field of a multipart body."""
    name: str
    required: bool = True
    description: str = ""


@dataclass(frozen=True)
class ResponseSpec:
    """Documented outcome for one status code."""
    description: str
    schema: Optional[Type[BaseModel]] = None


def _is_model(schema) -> bool:
    return isinstance(schema, type) and issubclass(schema, BaseModel)


@dataclass(frozen=True, eq=False)
class ContractDescriptor:
    """
    Complete contract for an endpoint. Immutable once constructed.

    Raises:
        ContractDefinitionError: on inconsistent declarations (both a JSON
        body and file fields, roles without auth, unknown method, ...)
    """
    method: str
    path: str
    summary: str = ""
    description: str = ""
    tags: Tuple[str, ...] = ()
    auth_required: bool = False
    required_roles: Tuple[Role, ...] = ()
    body_schema: Optional[Type[BaseModel]] = None
    query_schema: Optional[Type[BaseModel]] = None
    path_schema: Optional[Type[BaseModel]] = None
    file_fields: Tuple[FileFieldSpec, ...] = ()
    form_fields_schema: Optional[Type[BaseModel]] = None
    responses: Mapping[int, ResponseSpec] = field(default_factory=dict)
    success_status: Optional[int] = None

    def __post_init__(self):
        method = self.method.upper()
        if method not in HTTP_METHODS:
            raise ContractDefinitionError(f"Unsupported method '{self.method}' for {self.path}")
        if not self.path.startswith('/'):
            raise ContractDefinitionError(f"Path must start with '/': {self.path!r}")

        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'method', method)
        object.__setattr__(self, 'tags', tuple(self.tags))
        object.__setattr__(self, 'required_roles', tuple(self.required_roles))
        object.__setattr__(self, 'file_fields', tuple(self.file_fields))

        if self.body_schema is not None and self.file_fields:
            raise ContractDefinitionError(
                f"{self.key_str}: body_schema and file_fields are mutually exclusive"
            )
        if self.form_fields_schema is not None and not self.file_fields:
            raise ContractDefinitionError(
                f"{self.key_str}: form_fields_schema requires file_fields"
            )
        if self.required_roles and not self.auth_required:
            raise ContractDefinitionError(
                f"{self.key_str}: required_roles needs auth_required=True"
            )
        for role in self.required_roles:
            if not isinstance(role, Role):
                raise ContractDefinitionError(f"{self.key_str}: unknown role {role!r}")

        for name in ('body_schema', 'query_schema', 'path_schema', 'form_fields_schema'):
            schema = getattr(self, name)
            if schema is not None and not _is_model(schema):
                raise ContractDefinitionError(f"{self.key_str}: {name} must be a pydantic model")

        names = [spec.name for spec in self.file_fields]
        if len(names) != len(set(names)):
            raise ContractDefinitionError(f"{self.key_str}: duplicate file field names")
        if self.form_fields_schema is not None:
            overlap = set(names) & set(_field_names(self.form_fields_schema))
            if overlap:
                raise ContractDefinitionError(
                    f"{self.key_str}: file fields shadow form fields {sorted(overlap)}"
                )

        placeholders = path_params(self.path)
        if len(placeholders) != len(set(placeholders)):
            raise ContractDefinitionError(f"{self.key_str}: repeated path placeholder")
        if placeholders and self.path_schema is None:
            raise ContractDefinitionError(
                f"{self.key_str}: path placeholders {placeholders} need a path_schema"
            )
        if self.path_schema is not None:
            declared = _field_names(self.path_schema)
            if set(declared) != set(placeholders):
                raise ContractDefinitionError(
                    f"{self.key_str}: path_schema fields {declared} do not match "
                    f"path placeholders {placeholders}"
                )

        if self.success_status is None:
            object.__setattr__(self, 'success_status', 201 if method == 'POST' else 200)

        responses = dict(self.responses)
        if not responses:
            responses[self.success_status] = ResponseSpec("Success")
        object.__setattr__(self, 'responses', MappingProxyType(responses))

    @property
    def key(self) -> Tuple[str, str]:
        return (self.method, self.path)

    @property
    def key_str(self) -> str:
        return f"{self.method} {self.path}"

    @property
    def has_multipart_body(self) -> bool:
        return bool(self.file_fields)

    @property
    def has_request_body(self) -> bool:
        return self.body_schema is not None or bool(self.file_fields)


def _field_names(schema: Type[BaseModel]) -> List[str]:
    # introspect imports this module
    from .introspect import wire_names
    return wire_names(schema)


class ContractRegistry:
    """
    Ordered registry of endpoint contracts and their handlers.

    Written during startup, read-only once sealed.
    """

    def __init__(self):
        self._contracts: Dict[Tuple[str, str], ContractDescriptor] = {}
        self._handlers: Dict[Tuple[str, str], Callable] = {}
        self._sealed = False
        self.revision = 0

    def register(self, contract: ContractDescriptor, handler: Optional[Callable] = None) -> ContractDescriptor:
        """
        Register an endpoint contract.

        Args:
            contract: The ContractDescriptor to register
            handler: Optional handler called with the RequestContext

        Raises:
            ContractDefinitionError: If sealed, or (method, path) already registered
        """
        if self._sealed:
            raise ContractDefinitionError(
                f"Registry is sealed; cannot register {contract.key_str}"
            )
        if contract.key in self._contracts:
            raise ContractDefinitionError(f"Contract already registered: {contract.key_str}")

        self._contracts[contract.key] = contract
        if handler is not None:
            self._handlers[contract.key] = handler
        self.revision += 1
        return contract

    def route(self, method: str, path: str, **options) -> Callable:
        """
        Decorator form of register().

        Usage:
            @registry.route("POST", "/auth/login", body_schema=LoginBody)
            def login(ctx):
                return {"email": ctx.validated_body.email}
        """
        contract = ContractDescriptor(method=method, path=path, **options)

        def decorator(fn: Callable) -> Callable:
            self.register(contract, fn)
            return fn
        return decorator

    def attach_handler(self, method: str, path: str, handler: Callable) -> None:
        """Attach (or replace) the handler of an already registered contract."""
        key = (method.upper(), path)
        if key not in self._contracts:
            raise ContractDefinitionError(f"No contract registered for {method.upper()} {path}")
        self._handlers[key] = handler

    def get(self, method: str, path: str) -> Optional[ContractDescriptor]:
        return self._contracts.get((method.upper(), path))

    def handler_for(self, method: str, path: str) -> Optional[Callable]:
        return self._handlers.get((method.upper(), path))

    def seal(self) -> None:
        """Reject further registrations (called once routes are bound)."""
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def contracts(self) -> Sequence[ContractDescriptor]:
        """Registered contracts in registration order."""
        return list(self._contracts.values())

    def __iter__(self) -> Iterator[ContractDescriptor]:
        return iter(self.contracts())

    def __len__(self) -> int:
        return len(self._contracts)

    def __contains__(self, key) -> bool:
        method, path = key
        return (method.upper(), path) in self._contracts
