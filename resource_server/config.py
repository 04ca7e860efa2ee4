"""
Resource server configuration. Origin, issuer and audience are public identifiers, not secrets.
"""
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# This server's public base URL; metadata documents and WWW-Authenticate hints are built on it
ORIGIN = os.environ.get("PROTECTED_ROUTES_ORIGIN", "http://127.0.0.1:7000").rstrip("/")

# Authorization Server (OIDC Provider): where we fetch JWKS
ISSUER = os.environ.get("OAUTH_ISSUER", "http://127.0.0.1:9000").rstrip("/")

# Advertised in protected resource metadata; comma-separated, defaults to the issuer
AUTHORIZATION_SERVERS = [
    s.strip().rstrip("/")
    for s in os.environ.get("PROTECTED_ROUTES_AUTHORIZATION_SERVERS", ISSUER).split(",")
    if s.strip()
]

# Default for routes that don't declare protection explicitly
ALL_ROUTES_REQUIRE_AUTHORIZATION = _env_flag("PROTECTED_ROUTES_ALL_ROUTES_REQUIRE_AUTHORIZATION")

# This API's audience: access tokens must include this in aud
API_AUDIENCE = os.environ.get("OAUTH_API_AUDIENCE", ORIGIN)

JWKS_URI = f"{ISSUER}/.well-known/jwks.json"
JWKS_CACHE_TTL = int(os.environ.get("OAUTH_JWKS_CACHE_TTL", "300"))

# Off by default: expired tokens and missing scopes are accepted unless enabled
VERIFY_EXPIRY = _env_flag("PROTECTED_ROUTES_VERIFY_EXPIRY")
ENFORCE_SCOPES = _env_flag("PROTECTED_ROUTES_ENFORCE_SCOPES")

SCOPE_READ = "api.read"
SCOPE_ADMIN = "api.admin"
