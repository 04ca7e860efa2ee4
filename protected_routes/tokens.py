"""
Bearer token verification pipeline.
decode header -> resolve key -> strip private material -> verify signature -> read claims
-> expiry -> subject -> audience -> scopes. Every failure is logged with a reason and
collapses to False; validate() never raises.
"""
import inspect
import logging
import time
from collections.abc import Iterable
from typing import Any, Awaitable, Callable

import jwt

from protected_routes.keys import KeyNotFoundError, KeyStore, strip_private_material

logger = logging.getLogger(__name__)

REASON_DECODE_FAILED = "decode_failed"
REASON_KEY_NOT_FOUND = "key_not_found"
REASON_KEY_STORE_ERROR = "key_store_error"
REASON_INVALID_KEY = "invalid_key"
REASON_SIGNATURE_INVALID = "signature_invalid"
REASON_TOKEN_EXPIRED = "token_expired"
REASON_SUBJECT_REJECTED = "subject_rejected"
REASON_SUBJECT_CHECK_FAILED = "subject_check_failed"
REASON_AUDIENCE_REJECTED = "audience_rejected"
REASON_AUDIENCE_CHECK_FAILED = "audience_check_failed"
REASON_INSUFFICIENT_SCOPE = "insufficient_scope"
REASON_UNEXPECTED_ERROR = "unexpected_error"

# Signature only; claim semantics are checked by the pipeline itself
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
    "verify_sub": False,
    "verify_jti": False,
}

SubjectPredicate = Callable[[str], bool | Awaitable[bool]]
AudiencePredicate = Callable[[str, str], bool | Awaitable[bool]]


class TokenRejected(Exception):
    """Internal: a pipeline step failed. Never leaves TokenValidator.validate."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


async def _resolve(value):
    """Await value if it is awaitable; sync and async collaborators are both accepted."""
    if inspect.isawaitable(value):
        return await value
    return value


def parse_scope(scope_value: str | list | None) -> set[str]:
    """Normalize scope claim to a set of scope strings."""
    if scope_value is None:
        return set()
    if isinstance(scope_value, list):
        return set(str(s) for s in scope_value)
    return set(str(scope_value).split())


class TokenValidator:
    """
    Verifies compact JWS bearer tokens against a key store and caller-supplied predicates.

    Args:
        key_store: Resolves (alg, kid) to a JWK; see protected_routes.keys.
        test_subject: Predicate on the 'sub' claim (sync or async, may raise).
        test_audience: Predicate on one 'aud' value and the target URL (sync or async, may raise).
        logger: Optional logger for rejection records.
        verify_expiry: Enforce 'exp' (off by default; expired tokens are otherwise accepted).
        expiry_leeway: Seconds of clock skew tolerated when verify_expiry is on.
        enforce_scopes: Require the token's 'scope' to cover the route's required scopes
            (off by default; required scopes are otherwise only advertised in metadata).
    """

    def __init__(
        self,
        key_store: KeyStore,
        test_subject: SubjectPredicate,
        test_audience: AudiencePredicate,
        logger: logging.Logger | None = None,
        verify_expiry: bool = False,
        expiry_leeway: int = 0,
        enforce_scopes: bool = False,
    ):
        self.key_store = key_store
        self.test_subject = test_subject
        self.test_audience = test_audience
        self.logger = logger or logging.getLogger(__name__)
        self.verify_expiry = verify_expiry
        self.expiry_leeway = expiry_leeway
        self.enforce_scopes = enforce_scopes

    async def validate(self, token: str, url: str, scopes: Iterable[str] = ()) -> bool:
        """True only if every step passes. Never raises."""
        try:
            claims = await self._verified_claims(token)
            self._check_expiry(claims.get("exp"))
            await self._check_subject(claims.get("sub"))
            await self._check_audience(claims.get("aud"), url)
            self._check_scopes(claims.get("scope"), scopes)
            return True
        except TokenRejected as e:
            self.logger.warning("Token rejected (%s): %s", e.reason, e, extra={"reason": e.reason, "url": url})
            return False
        except Exception as e:
            self.logger.error(
                "Token verification failed unexpectedly: %s",
                e,
                exc_info=True,
                extra={"reason": REASON_UNEXPECTED_ERROR, "url": url},
            )
            return False

    async def _verified_claims(self, token: str) -> dict[str, Any]:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            raise TokenRejected(REASON_DECODE_FAILED, f"Malformed token header: {e}")
        alg = header.get("alg")
        kid = header.get("kid")
        if not isinstance(alg, str) or not alg or alg.lower() == "none":
            raise TokenRejected(REASON_DECODE_FAILED, f"Unsupported alg {alg!r}")

        try:
            jwk = await _resolve(self.key_store.select_verification_key(alg, kid))
        except KeyNotFoundError as e:
            raise TokenRejected(REASON_KEY_NOT_FOUND, str(e))
        except Exception as e:
            raise TokenRejected(REASON_KEY_STORE_ERROR, f"Key store lookup failed: {e}")
        if jwk is None:
            raise TokenRejected(REASON_KEY_NOT_FOUND, f"No key for alg={alg} kid={kid}")

        try:
            key = jwt.PyJWK(strip_private_material(jwk), algorithm=alg)
        except (jwt.PyJWKError, jwt.InvalidKeyError) as e:
            raise TokenRejected(REASON_INVALID_KEY, f"Unusable key for alg={alg} kid={kid}: {e}")

        # Only the header's alg is allowed, the same alg the key was selected for
        try:
            return jwt.decode(token, key.key, algorithms=[alg], options=_DECODE_OPTIONS)
        except jwt.InvalidTokenError as e:
            raise TokenRejected(REASON_SIGNATURE_INVALID, f"Signature verification failed: {e}")

    def _check_expiry(self, exp) -> None:
        if not self.verify_expiry:
            return
        if not isinstance(exp, (int, float)) or isinstance(exp, bool):
            raise TokenRejected(REASON_TOKEN_EXPIRED, "Token has no usable exp claim")
        if exp + self.expiry_leeway <= time.time():
            raise TokenRejected(REASON_TOKEN_EXPIRED, "Token expired")

    async def _check_subject(self, sub) -> None:
        if not isinstance(sub, str) or not sub:
            raise TokenRejected(REASON_SUBJECT_REJECTED, "Token has no sub claim")
        try:
            accepted = await _resolve(self.test_subject(sub))
        except Exception as e:
            raise TokenRejected(REASON_SUBJECT_CHECK_FAILED, f"Subject check raised: {e}")
        if not accepted:
            raise TokenRejected(REASON_SUBJECT_REJECTED, f"Subject {sub!r} rejected")

    async def _check_audience(self, aud, url: str) -> None:
        audiences = aud if isinstance(aud, list) else [aud] if aud is not None else []
        try:
            for value in audiences:
                if await _resolve(self.test_audience(value, url)):
                    return
        except Exception as e:
            raise TokenRejected(REASON_AUDIENCE_CHECK_FAILED, f"Audience check raised: {e}")
        raise TokenRejected(REASON_AUDIENCE_REJECTED, f"No audience in {audiences!r} accepted for {url}")

    def _check_scopes(self, scope_claim, required: Iterable[str]) -> None:
        if not self.enforce_scopes:
            return
        missing = set(required) - parse_scope(scope_claim)
        if missing:
            raise TokenRejected(REASON_INSUFFICIENT_SCOPE, f"Missing scope(s): {' '.join(sorted(missing))}")


class CheckTokenValidator:
    """Adapts a single check_token(token) -> bool callable (sync or async) to the validator interface."""

    def __init__(self, check_token: Callable[[str], bool | Awaitable[bool]], logger: logging.Logger | None = None):
        self.check_token = check_token
        self.logger = logger or logging.getLogger(__name__)

    async def validate(self, token: str, url: str, scopes: Iterable[str] = ()) -> bool:
        try:
            return bool(await _resolve(self.check_token(token)))
        except Exception as e:
            self.logger.error("check_token raised: %s", e, exc_info=True, extra={"reason": REASON_UNEXPECTED_ERROR, "url": url})
            return False
