"""
Service adapter - turn a plain business function into a contract handler.

Keeps services free of request objects: they receive the validated body (and
optionally the caller's subject) and return a JSON-able result.
"""

from typing import Any, Callable, Optional

from .wrapper import Handler, RequestContext


def service_handler(
    service_fn: Callable[..., Any],
    success_status: Optional[int] = None,
    pass_user: bool = False,
) -> Handler:
    """
    Wrap service_fn(input[, user_id]) as a handler.

    Args:
        service_fn: Business function; AppErrors it raises pass through
        success_status: Status for the result (defaults to the contract's)
        pass_user: Also pass the authenticated subject as user_id

    Usage:
        registry.register(
            ContractDescriptor("POST", "/users", body_schema=CreateUser),
            service_handler(create_user, pass_user=True),
        )
    """
    def handler(ctx: RequestContext):
        payload = ctx.validated_body if ctx.validated_body is not None else ctx.validated_form
        if pass_user:
            user_id = ctx.claims.subject if ctx.claims is not None else None
            result = service_fn(payload, user_id=user_id)
        else:
            result = service_fn(payload)

        if success_status is not None:
            return result, success_status
        return result

    handler.__name__ = getattr(service_fn, '__name__', 'service_handler')
    return handler
