"""
Resource path templating and protected-resource metadata locations.
Templates use colon placeholders (/protected/:arg); Starlette brace syntax is converted.
"""
import re
from typing import Any, Mapping
from urllib.parse import urljoin

WELL_KNOWN_PREFIX = "/.well-known/oauth-protected-resource"

# Only a colon opening a path segment is a param; "/v1/items:batch" stays literal
_COLON_PARAM = re.compile(r"(?<=/):([A-Za-z_][A-Za-z0-9_]*)")
# {name} or {name:converter}
_BRACE_PARAM = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(?::[^}]*)?\}")


def interpolate(path_template: str, params: Mapping[str, Any]) -> str:
    """
    Replace every case-insensitive occurrence of :name with str(value).
    Values are not escaped; placeholders without a matching param stay literal.
    """
    resolved = path_template
    for name, value in params.items():
        replacement = str(value)
        resolved = re.sub(
            ":" + re.escape(name),
            lambda _m: replacement,
            resolved,
            flags=re.IGNORECASE,
        )
    return resolved


def metadata_path(path_template: str) -> str:
    """Well-known metadata path for a route template; the root route maps to the bare prefix."""
    return WELL_KNOWN_PREFIX + ("" if path_template == "/" else path_template)


def metadata_url(origin: str, request_path: str) -> str:
    """Absolute URL of the metadata document for a concrete request path."""
    return urljoin(origin, metadata_path(request_path or "/"))


def to_colon_template(path: str) -> str:
    return _BRACE_PARAM.sub(lambda m: ":" + m.group(1), path)


def to_brace_template(path: str) -> str:
    """Starlette path for a declared template; brace params and their converters are kept as given."""
    return _COLON_PARAM.sub(lambda m: "{" + m.group(1) + "}", path)
