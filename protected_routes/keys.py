"""
Verification key stores. A key store resolves (alg, kid) to a public JWK.
Stores may be sync or async; a miss raises KeyNotFoundError.
"""
import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Any, Awaitable, Protocol

import httpx

logger = logging.getLogger(__name__)

# RFC 7518 private members for RSA and EC/OKP keys
PRIVATE_JWK_MEMBERS = ("d", "p", "q", "dp", "dq", "qi", "oth")

_KTY_BY_ALG_PREFIX = {
    "RS": "RSA",
    "PS": "RSA",
    "ES": "EC",
    "HS": "oct",
}


class KeyNotFoundError(LookupError):
    """No verification key matches the requested algorithm and key id."""
    pass


class KeyStore(Protocol):
    def select_verification_key(
        self, alg: str, kid: str | None
    ) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]:
        ...


def strip_private_material(jwk: Mapping[str, Any]) -> dict:
    """Copy of a JWK without private members, so a misconfigured store cannot leak a key pair into verification."""
    return {k: v for k, v in jwk.items() if k not in PRIVATE_JWK_MEMBERS}


def key_type_for_alg(alg: str) -> str | None:
    if alg == "EdDSA":
        return "OKP"
    return _KTY_BY_ALG_PREFIX.get(alg[:2])


def _matches(jwk: Mapping[str, Any], alg: str, kid: str | None) -> bool:
    if kid is not None and jwk.get("kid") != kid:
        return False
    if jwk.get("alg") is not None and jwk.get("alg") != alg:
        return False
    if jwk.get("use") is not None and jwk.get("use") != "sig":
        return False
    return jwk.get("kty") == key_type_for_alg(alg)


class JwksKeyStore:
    """Key store over a static JWK Set ({"keys": [...]})."""

    def __init__(self, jwks: Mapping[str, Any]):
        self._keys = list(jwks.get("keys") or [])

    @property
    def keys(self) -> list[dict]:
        return list(self._keys)

    def select_verification_key(self, alg: str, kid: str | None) -> Mapping[str, Any]:
        for jwk in self._keys:
            if _matches(jwk, alg, kid):
                return jwk
        raise KeyNotFoundError(f"No key for alg={alg} kid={kid}")


class RemoteJwksKeyStore:
    """
    Key store backed by a remote JWKS endpoint (e.g. the authorization server's /.well-known/jwks.json).
    The JWK Set is cached for cache_ttl seconds and refetched once when a kid is not found,
    at most once per refresh_interval seconds. Concurrent callers share a single fetch.
    """

    def __init__(self, jwks_uri: str, cache_ttl: int = 300, timeout: float = 10.0, refresh_interval: float = 30.0):
        self.jwks_uri = jwks_uri
        self.cache_ttl = cache_ttl
        self.timeout = timeout
        self.refresh_interval = refresh_interval
        self._cached: JwksKeyStore | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def fetch(self) -> dict:
        """GET the JWK Set. Raises httpx.HTTPError on transport or status failure."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            r = await client.get(self.jwks_uri)
            r.raise_for_status()
            return r.json()

    def _is_fresh(self) -> bool:
        return self._cached is not None and time.monotonic() - self._fetched_at <= self.cache_ttl

    async def _load(self) -> JwksKeyStore:
        if self._is_fresh():
            return self._cached
        async with self._lock:
            # Another caller may have refreshed while this one waited
            if not self._is_fresh():
                await self._fetch_into_cache()
            return self._cached

    async def _refresh(self, seen: JwksKeyStore) -> JwksKeyStore:
        async with self._lock:
            if self._cached is not seen:
                return self._cached
            if time.monotonic() - self._fetched_at < self.refresh_interval:
                logger.debug("Skipping JWKS refresh for %s; last fetch was under %ss ago", self.jwks_uri, self.refresh_interval)
                return self._cached
            await self._fetch_into_cache()
            return self._cached

    async def _fetch_into_cache(self) -> None:
        jwks = await self.fetch()
        self._cached = JwksKeyStore(jwks)
        self._fetched_at = time.monotonic()
        logger.info("Loaded %d key(s) from %s", len(self._cached.keys), self.jwks_uri)

    async def select_verification_key(self, alg: str, kid: str | None) -> Mapping[str, Any]:
        store = await self._load()
        try:
            return store.select_verification_key(alg, kid)
        except KeyNotFoundError:
            if kid is None:
                raise
        # Unknown kid: the signing key may have rotated since the last fetch
        store = await self._refresh(store)
        return store.select_verification_key(alg, kid)

    def clear_cache(self) -> None:
        self._cached = None
        self._fetched_at = 0.0
