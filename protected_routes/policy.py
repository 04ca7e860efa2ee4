"""
Route policy resolution: decides once, at registration time, whether a route is protected
and which scopes it advertises. Policies are immutable after resolution.
"""
import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

UNPROTECTED_METHODS = frozenset({"HEAD", "OPTIONS"})


class RouteKind(enum.Enum):
    NORMAL = "normal"
    SYNTHETIC_METADATA = "synthetic_metadata"


@dataclass(frozen=True)
class ProtectionConfig:
    """Structured per-route protection declaration."""
    enabled: bool
    scopes_supported: tuple[str, ...] = ()

    def __post_init__(self):
        if isinstance(self.scopes_supported, list):
            object.__setattr__(self, "scopes_supported", tuple(self.scopes_supported))


@dataclass(frozen=True)
class RouteDescriptor:
    """What the resolver sees of a route: template, one HTTP method, declaration, kind."""
    path: str
    method: str
    protection: ProtectionConfig | bool | Mapping | None = None
    kind: RouteKind = RouteKind.NORMAL


@dataclass(frozen=True)
class RoutePolicy:
    requires_authorization: bool
    required_scopes: tuple[str, ...] = ()
    is_metadata_route: bool = False


_NOT_PROTECTED = RoutePolicy(requires_authorization=False)


def _is_scope_list(scopes) -> bool:
    return isinstance(scopes, (list, tuple)) and all(isinstance(s, str) for s in scopes)


def _from_mapping(declaration: Mapping) -> ProtectionConfig | None:
    """Accept {"enabled": ..., "scopes_supported"|"scopesSupported": [...]}; None if malformed."""
    enabled = declaration.get("enabled", False)
    scopes = declaration.get("scopes_supported", declaration.get("scopesSupported"))
    if not isinstance(enabled, bool):
        return None
    if scopes is None:
        scopes = ()
    if not _is_scope_list(scopes):
        return None
    return ProtectionConfig(enabled=enabled, scopes_supported=tuple(scopes))


def resolve_policy(route: RouteDescriptor, all_routes_require_authorization: bool = False) -> RoutePolicy:
    """
    Resolve the policy for one route.

    HEAD/OPTIONS are never protected. Routes synthesized for metadata are flagged and never
    protected. Otherwise an explicit declaration wins over the global default in both directions.
    """
    if route.method.upper() in UNPROTECTED_METHODS:
        return _NOT_PROTECTED

    if route.kind is RouteKind.SYNTHETIC_METADATA:
        return RoutePolicy(requires_authorization=False, is_metadata_route=True)

    declaration = route.protection
    if declaration is None:
        return RoutePolicy(requires_authorization=bool(all_routes_require_authorization))

    if isinstance(declaration, bool):
        return RoutePolicy(requires_authorization=declaration)

    if isinstance(declaration, Mapping):
        config = _from_mapping(declaration)
        if config is None:
            logger.warning("Malformed protection declaration on %s %s; route left unprotected", route.method, route.path)
            return _NOT_PROTECTED
        declaration = config

    if isinstance(declaration, ProtectionConfig):
        if not isinstance(declaration.enabled, bool) or not _is_scope_list(declaration.scopes_supported):
            logger.warning("Malformed protection declaration on %s %s; route left unprotected", route.method, route.path)
            return _NOT_PROTECTED
        return RoutePolicy(
            requires_authorization=declaration.enabled,
            required_scopes=declaration.scopes_supported,
        )

    logger.warning("Unsupported protection declaration %r on %s %s; route left unprotected", declaration, route.method, route.path)
    return _NOT_PROTECTED
