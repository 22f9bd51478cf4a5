"""
Identity context - who is calling, resolved once per request.

resolve_identity() turns an Authorization header into an IdentityContext or
raises Unauthenticated. Role checks are pure predicates over the resolved
claims: no I/O, and they cannot fail once the context exists.
"""

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from errors import Unauthenticated


@dataclass(frozen=True)
class IdentityContext:
    """Resolved caller: subject + read-only claims. Never persisted."""
    subject: str
    claims: Mapping[str, Any]
    roles: FrozenSet[str] = frozenset()

    def __post_init__(self):
        # Freeze the claims so nothing downstream can mutate them
        object.__setattr__(self, "claims", MappingProxyType(dict(self.claims)))


def has_role(identity: IdentityContext, role: str) -> bool:
    return role in identity.roles


def has_any_role(identity: IdentityContext, roles: Iterable[str]) -> bool:
    return any(role in identity.roles for role in roles)


def roles_from_claims(claims: Mapping[str, Any], roles_claim: str = "roles") -> FrozenSet[str]:
    """
    Read role names from `claims[roles_claim]`.

    Accepts a list of strings, or one string separated by spaces/commas
    (the OAuth "scope" style). Anything else yields no roles.
    """
    raw = claims.get(roles_claim)
    if isinstance(raw, str):
        return frozenset(r for r in re.split(r"[\s,]+", raw) if r)
    if isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset(str(r) for r in raw if isinstance(r, str) and r)
    return frozenset()


def bearer_token(authorization: Optional[str]) -> str:
    """
    Extract the token from an `Authorization: Bearer <token>` header.

    Raises:
        Unauthenticated: If the header is missing, not Bearer, or empty
    """
    if not authorization:
        raise Unauthenticated("Missing bearer credential")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Malformed bearer credential")
    return token.strip()


def resolve_identity(authorization: Optional[str], verifier, roles_claim: str = "roles") -> IdentityContext:
    """
    Resolve the caller behind an Authorization header.

    Args:
        authorization: Raw Authorization header value (may be None)
        verifier: TokenVerifier returning verified claims (None = nothing configured)
        roles_claim: Claim holding role names

    Raises:
        Unauthenticated: On any failure to produce a subject
    """
    token = bearer_token(authorization)
    if verifier is None:
        raise Unauthenticated("No token verifier configured")

    claims = verifier.verify(token)
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise Unauthenticated("Token has no subject")

    return IdentityContext(
        subject=subject,
        claims=claims,
        roles=roles_from_claims(claims, roles_claim),
    )
