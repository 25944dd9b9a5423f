"""
Contract enforcement package.

Provides the contract registry, schema introspection, the request pipeline
and the @api_contract decorator.
"""

from .registry import (
    FileFieldSpec,
    ResponseSpec,
    ContractDescriptor,
    ContractRegistry,
)
from .introspect import SchemaIntrospector, ValidationOutcome
from .multipart import UploadedFile
from .wrapper import RequestContext, RequestPipeline, api_contract, bind_routes
from .service import service_handler

__all__ = [
    'FileFieldSpec',
    'ResponseSpec',
    'ContractDescriptor',
    'ContractRegistry',
    'SchemaIntrospector',
    'ValidationOutcome',
    'UploadedFile',
    'RequestContext',
    'RequestPipeline',
    'api_contract',
    'bind_routes',
    'service_handler',
]
