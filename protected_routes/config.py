"""
Configuration for protected routes.
Origin and authorization server URLs are public identifiers, not secrets.
"""
import logging
from dataclasses import dataclass, field
from urllib.parse import urlsplit


class ConfigurationError(Exception):
    """Raised when protected-routes configuration is invalid."""
    pass


def _is_absolute_http_url(value: str) -> bool:
    parts = urlsplit(value)
    return parts.scheme in ("http", "https") and bool(parts.netloc)


@dataclass
class ProtectedRoutesOptions:
    """
    Process-wide options, supplied once at startup.

    Args:
        origin: Absolute base URL of this resource server, e.g. "https://api.example.com".
        authorization_servers: Authorization server URLs advertised in metadata documents.
        all_routes_require_authorization: Default for routes without an explicit declaration.
        logger: Optional logger; defaults to the protected_routes module loggers.
    """
    origin: str
    authorization_servers: list[str] = field(default_factory=list)
    all_routes_require_authorization: bool = False
    logger: logging.Logger | None = None

    def __post_init__(self):
        if not self.origin or not _is_absolute_http_url(self.origin):
            raise ConfigurationError(f"origin must be an absolute http(s) URL, got {self.origin!r}")
        self.origin = self.origin.rstrip("/")

        servers = list(self.authorization_servers or [])
        for server in servers:
            if not _is_absolute_http_url(server):
                raise ConfigurationError(f"authorization server must be an absolute http(s) URL, got {server!r}")
        self.authorization_servers = servers
        self.all_routes_require_authorization = bool(self.all_routes_require_authorization)
