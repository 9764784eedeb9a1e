"""
Playback URL management.

Presigned GET URLs expire, so a player that stays open longer than the
URL's lifetime needs a fresh one. The manager keeps one live URL per
player, renews it shortly before expiry and refreshes once on its own
when the player reports a hard media error.

    loading -> ready -> (renewal loop) -> ready | failed

Renewal only swaps the URL. Callers reload the media source, not the
whole player, so playback position survives a renewal.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Optional
from urllib.parse import unquote, urlsplit

from ..core.errors import InsufficientDataError, StoreError
from ..core.signing.sigv4 import utc_now
from ..core.uploads.models import PlaybackLease
from .gateway_client import GatewayApi

logger = logging.getLogger(__name__)


@dataclass
class PlaybackConfig:
    ttl_seconds: int = 3600
    refresh_margin: float = 120.0
    refresh_floor: float = 30.0
    auto_retry_limit: int = 1
    mime_type: str = "video/mp4"


class PlaybackState(Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


def resolve_object_key(
    object_key: Optional[str],
    legacy_url: Optional[str],
) -> tuple[Optional[str], Optional[str]]:
    """
    Work out what to presign.

    Returns ``(object_key, None)`` normally. Older records only stored a
    full presigned URL; its path is the object key on the virtual-hosted
    endpoint. When even that can't be parsed the legacy URL comes back
    as ``(None, legacy_url)`` to be used as-is. It may already have
    expired.
    """
    if object_key and object_key.strip():
        return object_key.strip(), None

    if not legacy_url:
        raise InsufficientDataError("No video source available (missing object key and legacy URL)")

    parsed = urlsplit(legacy_url)
    key = unquote(parsed.path).lstrip("/") if parsed.scheme and parsed.netloc else ""
    if key:
        return key, None

    logger.warning(
        "Could not parse object key from legacy URL; using it directly",
        extra={"legacy_url": legacy_url[:200]},
    )
    return None, legacy_url


def compute_renewal_delay(
    expires_at: datetime,
    now: datetime,
    margin: float,
    floor: float,
) -> float:
    """Seconds until renewal: ``margin`` before expiry, never sooner than ``floor``."""
    remaining = (expires_at - now).total_seconds()
    return max(remaining - margin, floor, 0.0)


class PlaybackUrlManager:
    """
    Keeps one playback URL alive for one object.

    ``on_url`` is called with the new URL every time the live URL
    changes. The renewal timer is an asyncio task; it is cancelled and
    recreated whenever the source changes and cancelled on ``close``.
    """

    def __init__(
        self,
        gateway: GatewayApi,
        config: Optional[PlaybackConfig] = None,
        object_key: Optional[str] = None,
        legacy_url: Optional[str] = None,
        on_url: Optional[Callable[[str], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._gateway = gateway
        self._config = config or PlaybackConfig()
        self._object_key = object_key
        self._legacy_url = legacy_url
        self._on_url = on_url
        self._clock = clock or utc_now
        self._sleep = sleep or asyncio.sleep

        self.state = PlaybackState.LOADING
        self.lease: Optional[PlaybackLease] = None
        self.error: Optional[str] = None
        self.next_renewal_in: Optional[float] = None
        self._auto_retries = 0
        self._timer: Optional[asyncio.Task] = None
        self._closed = False
        # Bumped on source change and close; loads started earlier are discarded
        self._generation = 0

    @property
    def url(self) -> Optional[str]:
        return self.lease.url if self.lease else None

    @property
    def renewal_scheduled(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def start(self) -> bool:
        """Fetch the first URL. Returns False when the manager ends up failed."""
        return await self._load_or_fail()

    async def renew(self) -> bool:
        """
        Swap in a fresh URL.

        On failure the current URL stays in use and no further renewal is
        scheduled; the next media error triggers the refresh instead.
        """
        if self._closed:
            return False
        try:
            applied = await self._load()
        except StoreError as e:
            logger.warning(
                "Playback URL renewal failed; keeping current URL",
                extra={"object_key": self._current_key(), "error": str(e)},
            )
            return False

        if applied:
            self._auto_retries = 0
        return applied

    async def handle_media_error(self) -> bool:
        """
        React to the player rejecting the current URL.

        Refreshes automatically up to ``auto_retry_limit`` times, then
        gives up and waits for ``retry``.
        """
        if self._auto_retries >= self._config.auto_retry_limit:
            self._fail("Playback error: the video could not be played after refreshing its URL")
            return False

        self._auto_retries += 1
        logger.info(
            "Refreshing playback URL after media error",
            extra={"object_key": self._current_key(), "attempt": self._auto_retries},
        )
        try:
            await self._load()
        except StoreError as e:
            self._fail(str(e))
            return False
        return True

    async def retry(self) -> bool:
        """Explicit user retry. Resets the automatic refresh budget."""
        self._auto_retries = 0
        return await self._load_or_fail()

    async def set_source(
        self,
        object_key: Optional[str] = None,
        legacy_url: Optional[str] = None,
    ) -> bool:
        """Point the manager at another object. Any pending renewal is dropped."""
        self._generation += 1
        self._cancel_timer()
        self._object_key = object_key
        self._legacy_url = legacy_url
        self._auto_retries = 0
        self.lease = None
        return await self._load_or_fail()

    async def close(self) -> None:
        self._closed = True
        self._generation += 1
        timer, self._timer = self._timer, None
        if timer is not None and not timer.done():
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer

    # -- internals ------------------------------------------------------------

    def _current_key(self) -> Optional[str]:
        if self.lease is not None and self.lease.object_key:
            return self.lease.object_key
        return self._object_key

    async def _load_or_fail(self) -> bool:
        self.state = PlaybackState.LOADING
        self.error = None
        try:
            await self._load()
        except StoreError as e:
            self._fail(str(e))
            return False
        return True

    async def _load(self) -> bool:
        """Fetch and install a lease. Returns False when the result went stale."""
        generation = self._generation
        key, fallback_url = resolve_object_key(self._object_key, self._legacy_url)
        issued_at = self._clock()

        if key is None:
            # Degraded: expiry unknown, so nothing to renew
            self._cancel_timer()
            self._swap(PlaybackLease(object_key=None, url=fallback_url, issued_at=issued_at, expires_at=None))
            return True

        logger.debug(
            "Presigning playback URL",
            extra={"object_key": key, "mime_type": self._config.mime_type},
        )
        response = await self._gateway.presign_get(key, self._config.mime_type, self._config.ttl_seconds)
        if generation != self._generation:
            logger.debug("Discarding playback URL for a replaced source", extra={"object_key": key})
            return False

        expires_in = response.expires_in or self._config.ttl_seconds
        lease = PlaybackLease(
            object_key=key,
            url=response.url,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=expires_in),
        )
        self._swap(lease)
        self._schedule(lease)
        return True

    def _swap(self, lease: PlaybackLease) -> None:
        previous = self.url
        self.lease = lease
        self.state = PlaybackState.READY
        self.error = None
        if lease.url != previous and self._on_url is not None:
            self._on_url(lease.url)

    def _schedule(self, lease: PlaybackLease) -> None:
        self._cancel_timer()
        if self._closed or lease.expires_at is None:
            return

        delay = compute_renewal_delay(
            lease.expires_at,
            self._clock(),
            self._config.refresh_margin,
            self._config.refresh_floor,
        )
        self.next_renewal_in = delay
        self._timer = asyncio.create_task(self._renew_after(delay))

    async def _renew_after(self, delay: float) -> None:
        await self._sleep(delay)
        # This task is finished as a timer; renew() may schedule the next one
        self._timer = None
        self.next_renewal_in = None
        await self.renew()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.next_renewal_in = None

    def _fail(self, message: str) -> None:
        self._cancel_timer()
        self.state = PlaybackState.FAILED
        self.error = message
        logger.error(
            "Playback failed",
            extra={"object_key": self._current_key(), "error": message},
        )
