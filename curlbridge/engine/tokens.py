"""
Token Manager
=============
Acquires and caches bearer tokens for providers that need a login step.

States per provider: NoToken -> Valid -> Expired -> Refreshing -> Valid | RefreshFailed

Design
------
- Tokens are cached in a dict keyed by provider id, seeded from the token
  the provider store persisted on the descriptor (if any).
- A refresh runs as one asyncio.Task per provider id.  Every caller that
  arrives while it is in flight awaits that same task, so concurrent
  callers trigger exactly one login call and all see the same token or the
  same failure.  The check-and-spawn step has no await in it, which makes
  it atomic on the event loop.
- Waiters await the task through asyncio.shield: one caller being cancelled
  does not cancel the refresh the others are waiting on.
- No retries.  A failed refresh is reported as TOKEN_REFRESH_FAILED and the
  next call starts a fresh attempt.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import partial
from typing import Callable, Dict, Optional

import httpx

from curlbridge.config import get_settings
from curlbridge.core.errors import AdapterError, ErrorKind
from curlbridge.core.logging import get_logger
from curlbridge.engine.paths import PathSyntaxError, get_path
from curlbridge.models import AuthConfig, ProviderDescriptor
from curlbridge.services.provider_store import ProviderStore

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class CachedToken:
    value: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        return bool(self.value) and _aware(self.expires_at) > now


class TokenManager:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        store: ProviderStore,
        validity: Optional[timedelta] = None,
        login_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        settings = get_settings()
        self._client = http_client
        self._store = store
        self._validity = validity or timedelta(hours=settings.token_validity_hours)
        self._login_timeout = login_timeout if login_timeout is not None else settings.login_timeout_seconds
        self._clock = clock
        self._cache: Dict[str, CachedToken] = {}
        self._inflight: Dict[str, "asyncio.Task[CachedToken]"] = {}

    # ── Public API ─────────────────────────────────────────────────────────────

    async def get_token(self, descriptor: ProviderDescriptor) -> str:
        """Return a valid bearer token, logging in first if needed."""
        if descriptor.auth is None:
            raise AdapterError(
                ErrorKind.TOKEN_REFRESH_FAILED,
                "Provider has no login configuration",
                provider_id=descriptor.id,
            )

        cached = self._lookup(descriptor)
        if cached is not None and cached.is_valid(self._clock()):
            return cached.value

        task = self._inflight.get(descriptor.id)
        if task is None:
            task = asyncio.create_task(self._refresh(descriptor, descriptor.auth))
            self._inflight[descriptor.id] = task
            task.add_done_callback(partial(self._refresh_done, descriptor.id))
        else:
            logger.debug("Joining in-flight token refresh", extra={"provider_id": descriptor.id})

        token = await asyncio.shield(task)
        return token.value

    def invalidate(self, provider_id: str) -> None:
        """Force the next get_token call for this provider to log in again."""
        self._cache[provider_id] = CachedToken(value="", expires_at=datetime.min.replace(tzinfo=timezone.utc))
        logger.info("Provider token invalidated", extra={"provider_id": provider_id})

    # ── Private helpers ────────────────────────────────────────────────────────

    def _lookup(self, descriptor: ProviderDescriptor) -> Optional[CachedToken]:
        cached = self._cache.get(descriptor.id)
        if cached is not None:
            return cached
        auth = descriptor.auth
        if auth is not None and auth.token and auth.token_expires_at:
            cached = CachedToken(value=auth.token, expires_at=_aware(auth.token_expires_at))
            self._cache[descriptor.id] = cached
        return cached

    def _refresh_done(self, provider_id: str, task: "asyncio.Task[CachedToken]") -> None:
        if self._inflight.get(provider_id) is task:
            del self._inflight[provider_id]
        # Mark the outcome as retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    def _failed(self, descriptor: ProviderDescriptor, message: str, **context) -> AdapterError:
        logger.warning(
            "Token refresh failed",
            extra={"provider_id": descriptor.id, "reason": message, **context},
        )
        return AdapterError(ErrorKind.TOKEN_REFRESH_FAILED, message, provider_id=descriptor.id, **context)

    async def _refresh(self, descriptor: ProviderDescriptor, auth: AuthConfig) -> CachedToken:
        logger.info("Refreshing provider token", extra={"provider_id": descriptor.id})

        try:
            response = await self._client.post(
                auth.login_endpoint,
                json=auth.credentials,
                timeout=self._login_timeout,
            )
        except httpx.HTTPError as exc:
            raise self._failed(descriptor, f"Login request failed: {exc!r}") from exc

        if not response.is_success:
            raise self._failed(
                descriptor,
                f"Login endpoint responded with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise self._failed(descriptor, "Login reply is not valid JSON") from exc

        try:
            token = get_path(data, auth.token_path)
            expires_in = get_path(data, auth.expires_in_path) if auth.expires_in_path else None
        except PathSyntaxError as exc:
            raise self._failed(descriptor, str(exc)) from exc

        if not isinstance(token, str) or not token:
            raise self._failed(descriptor, f"No token found at '{auth.token_path}'", path=auth.token_path)

        now = self._clock()
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
            expires_at = now + timedelta(seconds=expires_in)
        else:
            expires_at = now + self._validity

        cached = CachedToken(value=token, expires_at=expires_at)
        self._cache[descriptor.id] = cached

        try:
            await self._store.save_token(descriptor.id, token, expires_at)
        except Exception as exc:
            # The token itself is good; losing the write only costs a login later
            logger.warning(
                "Could not persist refreshed token",
                extra={"provider_id": descriptor.id, "error": str(exc)},
            )

        logger.info(
            "Provider token refreshed",
            extra={"provider_id": descriptor.id, "expires_at": expires_at.isoformat()},
        )
        return cached
