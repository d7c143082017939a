"""
Bearer-credential verification against the identity provider (Supabase Auth).

The provider is the system of record for users; this module only asks it
"who does this credential belong to?" and passes the answer through. Nothing
is cached and any failure is treated as "not authenticated".
"""

import json
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass

import httpx

from src.clickmemory import config
from src.clickmemory.errors import (
    InvalidCredential,
    MissingCredential,
    ProviderUnavailable,
    ServiceNotConfigured,
    Timeout,
)

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass(frozen=True)
class Identity:
    id: str
    email: str | None = None


class SupabaseIdentityProvider:
    """
    Thin client for the Supabase Auth REST API.

    One ``httpx.Client`` is created per provider and reused for every call;
    pass *client* to inject a preconfigured one (tests use MockTransport).

    *timeout* bounds the whole user lookup, not each socket operation: a
    provider that stalls before its headers or drips its body still fails
    after *timeout* seconds.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
    ):
        self._api_key = api_key
        self._timeout = timeout
        self._client = client or httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
        )
        self._executor = ThreadPoolExecutor(thread_name_prefix="identity-provider")

    def get_user(self, credential: str) -> dict:
        """
        Return the provider's user object; raises httpx errors as-is.

        A lookup that overruns the deadline raises ``httpx.TimeoutException``
        and is abandoned.
        """
        deadline = time.monotonic() + self._timeout
        future = self._executor.submit(self._fetch_user, credential, deadline)
        try:
            return future.result(timeout=self._timeout)
        except FuturesTimeout:
            future.cancel()
            raise httpx.TimeoutException("identity lookup exceeded its deadline") from None

    def _fetch_user(self, credential: str, deadline: float) -> dict:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"{BEARER_PREFIX}{credential}",
        }
        with self._client.stream("GET", "/auth/v1/user", headers=headers) as response:
            response.raise_for_status()
            body = bytearray()
            for chunk in response.iter_bytes():
                # The caller has already given up; stop reading.
                if time.monotonic() > deadline:
                    raise httpx.ReadTimeout(
                        "identity response exceeded its deadline",
                        request=response.request,
                    )
                body.extend(chunk)
        return json.loads(body)

    def ping(self) -> bool:
        try:
            response = self._client.get(
                "/auth/v1/health", headers={"apikey": self._api_key}
            )
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._client.close()


def extract_bearer(authorization: str | None) -> str:
    """Return the credential from an ``Authorization: Bearer <x>`` header."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise MissingCredential()
    credential = authorization[len(BEARER_PREFIX):].strip()
    if not credential:
        raise MissingCredential()
    return credential


class IdentityVerifier:
    def __init__(self, provider: SupabaseIdentityProvider):
        self.provider = provider

    def verify(self, authorization: str | None) -> Identity:
        """
        Resolve the Authorization header to a verified Identity.

        Raises:
            MissingCredential   – header absent, not ``Bearer``, or empty
            Timeout             – provider did not answer in time
            ProviderUnavailable – provider could not be reached
            InvalidCredential   – provider rejected the credential or
                                  returned no usable user
        """
        credential = extract_bearer(authorization)
        try:
            user = self.provider.get_user(credential)
        except httpx.TimeoutException as exc:
            logger.warning("auth_provider_timeout")
            raise Timeout() from exc
        except httpx.HTTPStatusError as exc:
            logger.info("auth_identity_rejected status=%d", exc.response.status_code)
            raise InvalidCredential() from exc
        except httpx.TransportError as exc:
            logger.error("auth_provider_unreachable error=%s", type(exc).__name__)
            raise ProviderUnavailable() from exc
        except ValueError as exc:
            # Body was not JSON.
            logger.warning("auth_identity_rejected reason=malformed_response")
            raise InvalidCredential() from exc

        if not isinstance(user, dict) or not user.get("id"):
            logger.info("auth_identity_rejected reason=no_user")
            raise InvalidCredential()
        return Identity(id=str(user["id"]), email=user.get("email"))


# ── Process-wide verifier ─────────────────────────────────────────────────────

_verifier: IdentityVerifier | None = None
_verifier_lock = threading.Lock()


def get_identity_verifier() -> IdentityVerifier:
    """FastAPI dependency returning the shared verifier (built on first use)."""
    global _verifier
    with _verifier_lock:
        if _verifier is None:
            api_key = config.provider_api_key()
            if not config.SUPABASE_URL or not api_key:
                logger.error("auth_provider_not_configured")
                raise ServiceNotConfigured()
            _verifier = IdentityVerifier(
                SupabaseIdentityProvider(
                    config.SUPABASE_URL,
                    api_key,
                    timeout=config.IDENTITY_TIMEOUT_SECONDS,
                )
            )
        return _verifier


def close_identity_verifier() -> None:
    global _verifier
    with _verifier_lock:
        if _verifier is not None:
            _verifier.provider.close()
            _verifier = None
