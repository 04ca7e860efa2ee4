"""
OAuth 2.0 Protected Resource Metadata (RFC 9728) documents, one per protected route.
Computed per request so parameterized routes describe the concrete resource accessed.
"""
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from protected_routes.paths import interpolate

BEARER_METHODS_SUPPORTED = ("body",)


@dataclass
class ResourceMetadataDocument:
    resource: str
    authorization_servers: list[str]
    scopes_supported: list[str] = field(default_factory=list)
    bearer_methods_supported: list[str] = field(default_factory=lambda: list(BEARER_METHODS_SUPPORTED))

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_metadata_document(
    origin: str,
    authorization_servers: Iterable[str],
    path_template: str,
    path_params: Mapping[str, Any],
    scopes_supported: Iterable[str] = (),
) -> ResourceMetadataDocument:
    """resource = origin + the route template interpolated with the current request's path params."""
    return ResourceMetadataDocument(
        resource=f"{origin}{interpolate(path_template, path_params)}",
        authorization_servers=list(authorization_servers),
        scopes_supported=list(scopes_supported),
    )
