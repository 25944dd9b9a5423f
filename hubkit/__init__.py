"""
hubkit - declarative endpoint contracts for Flask.

One ContractDescriptor per endpoint drives both request enforcement
(correlation, auth, roles, body/query/path validation) and the OpenAPI
document.
"""

from .auth import AuthConfig, AuthVerifier, Claims, Role, check_role, extract_bearer_token
from .contracts import (
    ContractDescriptor,
    ContractRegistry,
    FileFieldSpec,
    RequestContext,
    RequestPipeline,
    ResponseSpec,
    SchemaIntrospector,
    UploadedFile,
    api_contract,
    bind_routes,
    service_handler,
)
from .errors import AppError, ContractDefinitionError, ErrorKind, STATUS_BY_KIND
from .middleware import CORRELATION_ID_HEADER
from .openapi import DocumentInfo, DocumentSynthesizer

__all__ = [
    'AuthConfig',
    'AuthVerifier',
    'Claims',
    'Role',
    'check_role',
    'extract_bearer_token',
    'ContractDescriptor',
    'ContractRegistry',
    'FileFieldSpec',
    'RequestContext',
    'RequestPipeline',
    'ResponseSpec',
    'SchemaIntrospector',
    'UploadedFile',
    'api_contract',
    'bind_routes',
    'service_handler',
    'AppError',
    'ContractDefinitionError',
    'ErrorKind',
    'STATUS_BY_KIND',
    'CORRELATION_ID_HEADER',
    'DocumentInfo',
    'DocumentSynthesizer',
]
