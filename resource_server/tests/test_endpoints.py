"""
Pytest tests for resource server endpoints.
Tests /public, /me, /admin, /items success and failure paths and metadata discovery.
"""
import time
from unittest.mock import AsyncMock, patch

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key
from fastapi.testclient import TestClient

from resource_server import main as main_module
from resource_server.config import API_AUDIENCE, AUTHORIZATION_SERVERS, ORIGIN
from resource_server.main import app

WELL_KNOWN = "/.well-known/oauth-protected-resource"


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    byt = value.to_bytes(length, "big")
    s = jwt.utils.base64url_encode(byt)
    return s.decode("utf-8") if isinstance(s, bytes) else s


def _make_key_and_jwks():
    """Generate RSA key and JWKS dict for testing."""
    key = generate_private_key(65537, 2048, default_backend())
    pub = key.public_key().public_numbers()
    jwk = {
        "kty": "RSA",
        "kid": "test-key",
        "alg": "RS256",
        "n": _int_to_b64url(pub.n),
        "e": _int_to_b64url(pub.e),
    }
    jwks = {"keys": [jwk]}
    return key, jwks


def _make_token(key, sub: str, scope: str, *, aud=API_AUDIENCE):
    """Build a valid access token for tests."""
    now = int(time.time())
    payload = {
        "sub": sub,
        "scope": scope,
        "aud": aud,
        "exp": now + 3600,
        "iat": now,
    }
    return jwt.encode(
        payload,
        key,
        algorithm="RS256",
        headers={"kid": "test-key"},
    )


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def key_and_jwks():
    return _make_key_and_jwks()


def _mock_jwks(jwks: dict):
    """Serve the given JWKS instead of fetching it from the authorization server."""
    main_module.key_store.clear_cache()
    return patch.object(main_module.key_store, "fetch", AsyncMock(return_value=jwks))


# --- open endpoints ---


def test_health_returns_200(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json().get("service") == "resource_server"


def test_public_returns_200(client):
    response = client.get("/public")
    assert response.status_code == 200
    assert response.json().get("access") == "anonymous"
    assert "www-authenticate" not in response.headers


# --- /me ---


def test_me_without_auth_returns_401_with_discovery_hint(client):
    response = client.get("/me")
    assert response.status_code == 401
    assert response.json()["detail"]["code"] == "UNAUTHORIZED"
    assert response.headers["www-authenticate"] == f'Bearer resource_metadata="{ORIGIN}{WELL_KNOWN}/me"'


def test_me_with_invalid_token_returns_401(client, key_and_jwks):
    _, jwks = key_and_jwks
    with _mock_jwks(jwks):
        response = client.get("/me", headers={"Authorization": "Bearer invalid-token"})
    assert response.status_code == 401


def test_me_with_valid_token_returns_200(client, key_and_jwks):
    key, jwks = key_and_jwks
    token = _make_token(key, "user1", "api.read")
    with _mock_jwks(jwks):
        response = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json().get("message") == "Authenticated"


def test_me_with_token_for_other_audience_returns_401(client, key_and_jwks):
    key, jwks = key_and_jwks
    token = _make_token(key, "user1", "api.read", aud="https://other-api.example.com")
    with _mock_jwks(jwks):
        response = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


def test_me_with_token_signed_by_unknown_key_returns_401(client, key_and_jwks):
    _, jwks = key_and_jwks
    other_key, _ = _make_key_and_jwks()
    token = _make_token(other_key, "user1", "api.read")
    with _mock_jwks(jwks):
        response = client.get("/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


# --- /admin ---


def test_admin_with_valid_token_returns_200(client, key_and_jwks):
    key, jwks = key_and_jwks
    token = _make_token(key, "admin1", "api.read api.admin")
    with _mock_jwks(jwks):
        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json().get("message") == "Admin access"


# --- /items/:item_id ---


def test_items_valid_token_returns_item(client, key_and_jwks):
    key, jwks = key_and_jwks
    token = _make_token(key, "user1", "api.read")
    with _mock_jwks(jwks):
        response = client.delete("/items/42", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json() == {"item_id": "42"}


# --- metadata discovery ---


def test_me_metadata(client):
    response = client.get(f"{WELL_KNOWN}/me")
    assert response.status_code == 200
    assert response.json() == {
        "resource": f"{ORIGIN}/me",
        "authorization_servers": AUTHORIZATION_SERVERS,
        "scopes_supported": ["api.read"],
        "bearer_methods_supported": ["body"],
    }


def test_item_metadata_is_scoped_to_item(client):
    response = client.get(f"{WELL_KNOWN}/items/42")
    assert response.status_code == 200
    assert response.json()["resource"] == f"{ORIGIN}/items/42"
    assert response.json()["scopes_supported"] == []


def test_open_endpoints_have_no_metadata(client):
    assert client.get(f"{WELL_KNOWN}/public").status_code == 404
