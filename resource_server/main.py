"""
Resource Server (Protected API) using protected_routes.
/health and /public are open; /me, /admin and /items/:item_id require a bearer token, and each
publishes its metadata under /.well-known/oauth-protected-resource.
Port 7000.
"""
from fastapi import FastAPI

from protected_routes.config import ProtectedRoutesOptions
from protected_routes.keys import RemoteJwksKeyStore
from protected_routes.policy import ProtectionConfig
from protected_routes.routes import ProtectedRoutes
from protected_routes.tokens import TokenValidator
from resource_server.config import (
    ALL_ROUTES_REQUIRE_AUTHORIZATION,
    API_AUDIENCE,
    AUTHORIZATION_SERVERS,
    ENFORCE_SCOPES,
    JWKS_CACHE_TTL,
    JWKS_URI,
    ORIGIN,
    SCOPE_ADMIN,
    SCOPE_READ,
    VERIFY_EXPIRY,
)

key_store = RemoteJwksKeyStore(JWKS_URI, cache_ttl=JWKS_CACHE_TTL)


def subject_exists(sub: str) -> bool:
    """Any non-empty subject issued by the authorization server is accepted."""
    return bool(sub.strip())


def audience_matches(aud: str, url: str) -> bool:
    """The token must be issued for this API, or for a resource URL prefixing the requested one."""
    return aud == API_AUDIENCE or url.startswith(aud.rstrip("/") + "/")


validator = TokenValidator(
    key_store=key_store,
    test_subject=subject_exists,
    test_audience=audience_matches,
    verify_expiry=VERIFY_EXPIRY,
    enforce_scopes=ENFORCE_SCOPES,
)

app = FastAPI(title="Resource Server", version="0.2.0")
protected = ProtectedRoutes(
    app,
    ProtectedRoutesOptions(
        origin=ORIGIN,
        authorization_servers=AUTHORIZATION_SERVERS,
        all_routes_require_authorization=ALL_ROUTES_REQUIRE_AUTHORIZATION,
    ),
    validator,
)


@protected.get("/health", protected=False)
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "resource_server"}


@protected.get("/public", protected=False)
def public():
    """Public endpoint; no authentication required."""
    return {"message": "Public data", "access": "anonymous"}


@protected.get("/me", protected=ProtectionConfig(enabled=True, scopes_supported=(SCOPE_READ,)))
def me():
    """Requires a bearer token; advertises api.read."""
    return {"message": "Authenticated"}


@protected.get("/admin", protected=ProtectionConfig(enabled=True, scopes_supported=(SCOPE_READ, SCOPE_ADMIN)))
def admin():
    """Requires a bearer token; advertises api.admin."""
    return {"message": "Admin access"}


@protected.route("/items/:item_id", methods=["GET", "DELETE"], protected=True)
def item(item_id: str):
    """Parameterized resource; metadata is scoped to the concrete item."""
    return {"item_id": item_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "resource_server.main:app",
        host="127.0.0.1",
        port=7000,
        reload=True,
    )
