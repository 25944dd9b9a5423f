"""
Authentication - Bearer token extraction, JWT verification and role checks.

Roles form a strict two-level hierarchy: ADMIN satisfies any check that only
requires MEMBER, never the other way round.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import jwt

from .errors import forbidden, unauthorized


logger = logging.getLogger('hubkit.auth')


class Role(Enum):
    MEMBER = "member"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Return the Role for a claim value, or None if unrecognised."""
        if isinstance(value, Role):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                return None
        return None


_ROLE_RANK = {
    Role.MEMBER: 1,
    Role.ADMIN: 2,
}


@dataclass(frozen=True)
class Claims:
    """Verified identity extracted from a token. Lives for one request."""
    subject: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[Role] = None


@dataclass(frozen=True)
class AuthConfig:
    """JWT verification settings."""
    secret: str
    algorithms: List[str] = field(default_factory=lambda: ["HS256"])
    issuer: Optional[str] = None
    audience: Optional[str] = None
    leeway_seconds: int = 0
    token_lifetime: timedelta = timedelta(hours=24)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Extract the token from an Authorization header value.

    Only "Bearer <token>" (scheme case-insensitive) is recognised; anything
    else is treated as absent.
    """
    if not authorization:
        return None

    parts = authorization.split(' ')
    if len(parts) != 2 or parts[0].lower() != 'bearer' or not parts[1]:
        return None
    return parts[1]


def _role_from_payload(payload: Dict[str, Any]) -> Optional[Role]:
    if 'role' in payload:
        return Role.parse(payload['role'])

    # Older tokens carry a list; the strongest recognised role wins
    roles = [Role.parse(r) for r in payload.get('roles') or []]
    roles = [r for r in roles if r is not None]
    if not roles:
        return None
    return max(roles, key=lambda r: r.rank)


class AuthVerifier:
    """Verifies bearer tokens against an AuthConfig."""

    def __init__(self, config: AuthConfig):
        if not config.secret:
            raise ValueError("AuthConfig.secret must be set")
        self.config = config

    def verify(self, token: str) -> Claims:
        """
        Verify a JWT and return its claims.

        Raises:
            AppError(UNAUTHORIZED): expired ("Token has expired") or otherwise
            invalid ("Invalid token")
        """
        try:
            payload = jwt.decode(
                token,
                self.config.secret,
                algorithms=self.config.algorithms,
                issuer=self.config.issuer,
                audience=self.config.audience,
                leeway=self.config.leeway_seconds,
                options={
                    "require": ["sub"],
                    "verify_aud": self.config.audience is not None,
                },
            )
        except jwt.ExpiredSignatureError:
            raise unauthorized("Token has expired")
        except jwt.InvalidTokenError as e:
            logger.debug(f"Token rejected: {type(e).__name__}: {e}")
            raise unauthorized("Invalid token")

        return Claims(
            subject=str(payload['sub']),
            email=payload.get('email'),
            name=payload.get('name'),
            role=_role_from_payload(payload),
        )

    def issue_token(
        self,
        subject: str,
        role: Optional[Role] = None,
        email: Optional[str] = None,
        name: Optional[str] = None,
        expires_in: Optional[timedelta] = None,
        **extra: Any,
    ) -> str:
        """
        Sign a token this verifier will accept (login endpoints, tests).

        expires_in defaults to the configured token_lifetime.
        """
        if expires_in is None:
            expires_in = self.config.token_lifetime
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            'sub': subject,
            'iat': now,
            'exp': now + expires_in,
        }
        if role is not None:
            payload['role'] = role.value
        if email:
            payload['email'] = email
        if name:
            payload['name'] = name
        if self.config.issuer:
            payload['iss'] = self.config.issuer
        if self.config.audience:
            payload['aud'] = self.config.audience
        payload.update(extra)
        return jwt.encode(payload, self.config.secret, algorithm=self.config.algorithms[0])


def check_role(claims: Claims, required_roles: Iterable[Role]) -> None:
    """
    Verify the claims satisfy at least one required role.

    An empty requirement always passes. Claims without a role fail any
    non-empty requirement.

    Raises:
        AppError(FORBIDDEN)
    """
    required = list(required_roles)
    if not required:
        return

    if claims.role is None:
        raise forbidden("Insufficient permissions")

    if not any(claims.role.rank >= role.rank for role in required):
        raise forbidden("Insufficient permissions")
