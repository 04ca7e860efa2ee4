"""
Shared fixtures for protected_routes tests: an RSA signing key, its JWK Set, and a token factory.
"""
import time

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from protected_routes.config import ProtectedRoutesOptions

ORIGIN = "https://api.example.com"
AUTHORIZATION_SERVER = "https://auth.example.com"
KID = "test-key"


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    s = jwt.utils.base64url_encode(value.to_bytes(length, "big"))
    return s.decode("utf-8") if isinstance(s, bytes) else s


def public_jwk(key, kid: str = KID) -> dict:
    pub = key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "alg": "RS256",
        "use": "sig",
        "n": _int_to_b64url(pub.n),
        "e": _int_to_b64url(pub.e),
    }


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def other_rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture
def jwks(rsa_key):
    return {"keys": [public_jwk(rsa_key)]}


@pytest.fixture
def make_token(rsa_key):
    """Factory: signed RS256 access token; pass key=... to sign with a different key."""

    def _make(sub="user1", aud=ORIGIN, scope="api.read", *, key=None, kid=KID, exp_in=3600, **extra):
        now = int(time.time())
        payload = {"sub": sub, "aud": aud, "scope": scope, "iat": now, "exp": now + exp_in, **extra}
        payload = {k: v for k, v in payload.items() if v is not None}
        headers = {"kid": kid} if kid is not None else None
        return jwt.encode(payload, key or rsa_key, algorithm="RS256", headers=headers)

    return _make


@pytest.fixture
def options():
    return ProtectedRoutesOptions(origin=ORIGIN, authorization_servers=[AUTHORIZATION_SERVER])
