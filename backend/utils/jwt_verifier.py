"""
Bearer token verification (PyJWT).

The identity gate only needs "token in, verified claims out"; how keys are
obtained is this module's business:
- SharedSecretVerifier: HS* tokens signed with a shared secret
- JwksVerifier: RS*/ES* tokens, signing keys fetched from a JWKS endpoint
  with a bounded timeout (PyJWKClient caches keys between requests)

Every rejection surfaces as Unauthenticated.
"""

import logging
from typing import Any, Dict, Optional, Protocol, Sequence

import jwt

from errors import Unauthenticated


logger = logging.getLogger('auth.jwt')


class TokenVerifier(Protocol):
    def verify(self, token: str) -> Dict[str, Any]:
        ...


def _decode(token: str, key, algorithms: Sequence[str], audience: Optional[str], issuer: Optional[str]) -> Dict[str, Any]:
    options = {"require": ["exp", "sub"], "verify_aud": audience is not None}
    try:
        return jwt.decode(
            token,
            key,
            algorithms=list(algorithms),
            audience=audience,
            issuer=issuer,
            options=options,
        )
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("token_rejected reason=%s", type(e).__name__)
        raise Unauthenticated("Invalid token")


class SharedSecretVerifier:
    """Verify HMAC-signed tokens."""

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
    ):
        if not secret:
            raise ValueError("SharedSecretVerifier requires a non-empty secret")
        self._secret = secret
        self._algorithms = [algorithm]
        self._audience = audience
        self._issuer = issuer

    def verify(self, token: str) -> Dict[str, Any]:
        return _decode(token, self._secret, self._algorithms, self._audience, self._issuer)


class JwksVerifier:
    """Verify asymmetric tokens against keys published at a JWKS URL."""

    def __init__(
        self,
        jwks_url: str,
        algorithms: Sequence[str] = ("RS256",),
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        timeout: float = 5.0,
        client: Optional[jwt.PyJWKClient] = None,
    ):
        self._client = client or jwt.PyJWKClient(jwks_url, cache_keys=True, timeout=timeout)
        self._algorithms = list(algorithms)
        self._audience = audience
        self._issuer = issuer

    def verify(self, token: str) -> Dict[str, Any]:
        try:
            signing_key = self._client.get_signing_key_from_jwt(token)
        except jwt.PyJWKClientError as e:
            # Key material unreachable or kid unknown: nobody can be identified
            logger.error("jwks_key_unavailable err=%s", str(e)[:200])
            raise Unauthenticated("Signing key unavailable")
        except jwt.DecodeError:
            raise Unauthenticated("Invalid token")
        return _decode(token, signing_key.key, self._algorithms, self._audience, self._issuer)


def build_verifier(config: Dict[str, Any]) -> Optional[TokenVerifier]:
    """
    Build the verifier described by app config.

    JWT_JWKS_URL wins over JWT_SECRET. Returns None (every protected
    request then fails with 401) when neither is configured.
    """
    audience = config.get("JWT_AUDIENCE")
    issuer = config.get("JWT_ISSUER")

    if config.get("JWT_JWKS_URL"):
        algorithm = config.get("JWT_ALGORITHM", "RS256")
        if algorithm.startswith("HS"):
            algorithm = "RS256"
        return JwksVerifier(
            config["JWT_JWKS_URL"],
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            timeout=float(config.get("JWKS_TIMEOUT_SECONDS", 5)),
        )

    if config.get("JWT_SECRET"):
        return SharedSecretVerifier(
            config["JWT_SECRET"],
            algorithm=config.get("JWT_ALGORITHM", "HS256"),
            audience=audience,
            issuer=issuer,
        )

    logger.warning("no_token_verifier_configured protected operations will return 401")
    return None
