"""
Identity gate - resolves the caller once per request.

The contract wrapper calls current_identity() for every operation whose
contract entry declares security; the resolved IdentityContext is cached on
flask.g and handed to the handler read-only.
"""

from flask import g, request

from api.extension import get_state
from utils.identity import IdentityContext, resolve_identity


def current_identity() -> IdentityContext:
    """
    Resolve (or reuse) the identity for the current request.

    Raises:
        Unauthenticated: If no identity can be resolved
    """
    identity = g.get("identity")
    if identity is not None:
        return identity

    state = get_state()
    identity = resolve_identity(
        request.headers.get("Authorization"),
        state.verifier,
        roles_claim=state.roles_claim,
    )
    g.identity = identity
    return identity
