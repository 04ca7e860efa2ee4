"""
Authorization gate: runs before the handler of every protected route.
Returns an AuthorizationError instead of raising; the HTTP layer turns it into a 401.
"""
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Awaitable, Protocol

from protected_routes.config import ProtectedRoutesOptions
from protected_routes.paths import metadata_url

logger = logging.getLogger(__name__)

# Case-sensitive on purpose; "bearer x" is treated as no token
BEARER_PREFIX = "Bearer "

UNAUTHORIZED_CODE = "UNAUTHORIZED"


class Validator(Protocol):
    def validate(self, token: str, url: str, scopes: Iterable[str] = ()) -> Awaitable[bool]:
        ...


@dataclass(frozen=True)
class AuthorizationError:
    """Uniform rejection: no distinction between missing, invalid or unaccepted tokens."""
    resource_metadata_url: str
    status_code: int = 401
    code: str = UNAUTHORIZED_CODE
    message: str = "Unauthorized"

    @property
    def www_authenticate(self) -> str:
        return f'Bearer resource_metadata="{self.resource_metadata_url}"'

    def to_dict(self) -> dict:
        return {"code": self.code, "error": "Unauthorized", "message": self.message}


def extract_bearer_token(authorization: str | None) -> str | None:
    """Token from an Authorization header value, or None if absent or not a Bearer credential."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX):].strip()
    return token or None


class AuthorizationGate:
    def __init__(self, options: ProtectedRoutesOptions, validator: Validator):
        self.options = options
        self.validator = validator
        self.logger = options.logger or logger

    async def authorize(
        self,
        authorization: str | None,
        request_path: str,
        target_url: str,
        required_scopes: Iterable[str] = (),
    ) -> AuthorizationError | None:
        """
        None when the request may proceed, else the rejection to send.
        target_url is the absolute URL the token must be valid for (audience checks use it).
        """
        token = extract_bearer_token(authorization)
        if token is not None and await self._check_token(token, target_url, tuple(required_scopes)):
            return None
        if token is None:
            self.logger.info("No bearer token for %s", request_path, extra={"reason": "token_missing"})
        return AuthorizationError(resource_metadata_url=metadata_url(self.options.origin, request_path))

    async def _check_token(self, token: str, target_url: str, scopes: tuple[str, ...]) -> bool:
        try:
            return bool(await self.validator.validate(token, target_url, scopes))
        except Exception as e:
            # Validators are expected to absorb their own failures
            self.logger.error("Token validator raised: %s", e, exc_info=True, extra={"reason": "validator_error"})
            return False
