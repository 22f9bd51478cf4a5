"""
Tests for identity resolution and bearer token verification.

Run: pytest tests/test_identity.py -v
"""

import time

import jwt
import pytest

from errors import Unauthenticated
from utils.identity import (
    IdentityContext,
    bearer_token,
    has_any_role,
    has_role,
    resolve_identity,
    roles_from_claims,
)
from utils.jwt_verifier import JwksVerifier, SharedSecretVerifier, build_verifier


WRONG_SECRET = "some-other-secret-that-is-long-enough-000"


class TestBearerToken:
    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer   "])
    def test_rejected(self, header):
        with pytest.raises(Unauthenticated):
            bearer_token(header)

    def test_case_insensitive_scheme(self):
        assert bearer_token("bearer abc.def.ghi") == "abc.def.ghi"


class TestRoles:
    def test_list_claim(self):
        assert roles_from_claims({"roles": ["admin", "", 3]}) == frozenset({"admin"})

    def test_scope_style_string(self):
        assert roles_from_claims({"scope": "read write,admin"}, "scope") == frozenset({"read", "write", "admin"})

    def test_missing_or_odd_claim(self):
        assert roles_from_claims({}) == frozenset()
        assert roles_from_claims({"roles": {"admin": True}}) == frozenset()

    def test_predicates(self):
        identity = IdentityContext(subject="U1", claims={}, roles=frozenset({"admin"}))
        assert has_role(identity, "admin")
        assert not has_role(identity, "editor")
        assert has_any_role(identity, ["editor", "admin"])

    def test_claims_are_read_only(self):
        identity = IdentityContext(subject="U1", claims={"sub": "U1"})
        with pytest.raises(TypeError):
            identity.claims["sub"] = "U2"


class TestSharedSecretVerifier:
    def test_resolves_subject_and_roles(self, make_token, jwt_secret):
        verifier = SharedSecretVerifier(jwt_secret)
        identity = resolve_identity(f"Bearer {make_token('U1', roles=['admin'])}", verifier)

        assert identity.subject == "U1"
        assert identity.roles == frozenset({"admin"})
        assert identity.claims["sub"] == "U1"

    def test_expired(self, make_token, jwt_secret):
        verifier = SharedSecretVerifier(jwt_secret)
        with pytest.raises(Unauthenticated, match="expired"):
            resolve_identity(f"Bearer {make_token(expires_in=-60)}", verifier)

    def test_wrong_signature(self, make_token, jwt_secret):
        verifier = SharedSecretVerifier(jwt_secret)
        with pytest.raises(Unauthenticated, match="Invalid token"):
            resolve_identity(f"Bearer {make_token(secret=WRONG_SECRET)}", verifier)

    def test_missing_subject(self, make_token, jwt_secret):
        verifier = SharedSecretVerifier(jwt_secret)
        with pytest.raises(Unauthenticated):
            resolve_identity(f"Bearer {make_token(sub=None)}", verifier)

    def test_garbage_token(self, jwt_secret):
        with pytest.raises(Unauthenticated):
            resolve_identity("Bearer not-a-jwt", SharedSecretVerifier(jwt_secret))

    def test_audience_enforced(self, make_token, jwt_secret):
        verifier = SharedSecretVerifier(jwt_secret, audience="lockstep")
        assert verifier.verify(make_token(aud="lockstep"))["aud"] == "lockstep"
        with pytest.raises(Unauthenticated):
            verifier.verify(make_token(aud="elsewhere"))

    def test_no_verifier_configured(self, make_token):
        with pytest.raises(Unauthenticated, match="No token verifier"):
            resolve_identity(f"Bearer {make_token()}", None)

    def test_empty_secret(self):
        with pytest.raises(ValueError):
            SharedSecretVerifier("")


class _FakeKey:
    def __init__(self, key):
        self.key = key


class _FakeJwksClient:
    def __init__(self, key=None, error=None):
        self._key = key
        self._error = error
        self.calls = 0

    def get_signing_key_from_jwt(self, token):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return _FakeKey(self._key)


class TestJwksVerifier:
    def test_verifies_with_fetched_key(self, make_token, jwt_secret):
        client = _FakeJwksClient(key=jwt_secret)
        verifier = JwksVerifier("https://issuer.test/jwks", algorithms=["HS256"], client=client)

        assert verifier.verify(make_token("U9"))["sub"] == "U9"
        assert client.calls == 1

    def test_key_source_unreachable_is_unauthenticated(self, make_token, caplog):
        client = _FakeJwksClient(error=jwt.PyJWKClientError("Fail to fetch data from the url"))
        verifier = JwksVerifier("https://issuer.test/jwks", client=client)

        with pytest.raises(Unauthenticated, match="Signing key unavailable"):
            verifier.verify(make_token())
        assert any("jwks_key_unavailable" in r.getMessage() for r in caplog.records)

    def test_undecodable_header(self):
        client = _FakeJwksClient(error=jwt.DecodeError("bad header"))
        with pytest.raises(Unauthenticated, match="Invalid token"):
            JwksVerifier("https://issuer.test/jwks", client=client).verify("junk")


class TestBuildVerifier:
    def test_shared_secret(self, jwt_secret):
        assert isinstance(build_verifier({"JWT_SECRET": jwt_secret}), SharedSecretVerifier)

    def test_jwks_wins(self, jwt_secret):
        verifier = build_verifier({
            "JWT_SECRET": jwt_secret,
            "JWT_JWKS_URL": "https://issuer.test/jwks",
            "JWT_ALGORITHM": "HS256",
        })
        assert isinstance(verifier, JwksVerifier)
        assert verifier._algorithms == ["RS256"]

    def test_nothing_configured(self):
        assert build_verifier({}) is None


def test_token_factory_round_trip(make_token, jwt_secret):
    claims = jwt.decode(make_token("U1"), jwt_secret, algorithms=["HS256"])
    assert claims["sub"] == "U1"
    assert claims["exp"] > time.time()
