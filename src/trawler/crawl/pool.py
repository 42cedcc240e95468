"""Bounded pool of headless browsers handing out one context per lease.

At most ``max_browsers`` browser processes run at once, each hosting at
most ``max_contexts_per_browser`` leased contexts. ``acquire`` waits for a
free slot and raises ``LeaseTimeoutError`` when none frees up in time; this
is the backpressure point for crawl concurrency.

Browsers are launched lazily through playwright (or an injected launcher)
and recycled once idle for ``idle_timeout`` seconds, never dropping below
``min_browsers``. ``shutdown()`` closes contexts, then browsers, then stops
playwright.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from playwright.async_api import async_playwright

from trawler.config import PoolCfg
from trawler.errors import FetchError, LeaseTimeoutError

logger = logging.getLogger(__name__)

_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 trawler/0.1"
)
_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]
_BLOCKED_RESOURCE_TYPES = frozenset({"image", "media", "font", "stylesheet"})
_BLOCKED_DOMAINS = (
    "google-analytics.com",
    "googletagmanager.com",
    "doubleclick.net",
    "facebook.net",
    "hotjar.com",
    "segment.io",
    "mixpanel.com",
)

Launcher = Callable[[], Awaitable[Any]]


@dataclass
class PoolStats:
    browsers: int
    max_browsers: int
    contexts: int
    max_contexts_per_browser: int
    lease_timeouts: int
    launches: int
    leases_outstanding: int = 0

    @property
    def max_contexts(self) -> int:
        return self.max_browsers * self.max_contexts_per_browser

    @property
    def utilization(self) -> float:
        """Fraction of all context slots currently leased (0.0 to 1.0)."""
        return self.contexts / self.max_contexts if self.max_contexts else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "browsers": self.browsers,
            "max_browsers": self.max_browsers,
            "contexts": self.contexts,
            "max_contexts": self.max_contexts,
            "max_contexts_per_browser": self.max_contexts_per_browser,
            "utilization": f"{round(self.utilization * 100)}%",
            "lease_timeouts": self.lease_timeouts,
            "launches": self.launches,
            "leases_outstanding": self.leases_outstanding,
        }


@dataclass(eq=False)
class _BrowserSlot:
    browser: Any = None  # None while the launch is in flight
    active: int = 0
    last_used: float = 0.0


@dataclass(eq=False)
class Lease:
    """Ownership of one browser context until ``BrowserPool.release``."""

    id: int
    context: Any
    _slot: _BrowserSlot = field(repr=False)
    released: bool = False


class BrowserPool:
    """Explicitly constructed browser pool; see module docstring.

    Args:
        max_browsers: Hard ceiling on browser processes.
        max_contexts_per_browser: Hard ceiling on leases per browser.
        acquire_timeout: Default seconds ``acquire`` waits for a free slot.
        idle_timeout: Seconds a browser with no leases may idle before recycling.
        cleanup_interval: Seconds between idle-recycling passes.
        min_browsers: Idle browsers kept alive regardless of ``idle_timeout``.
        headless: Launch browsers headless.
        launcher: Coroutine function returning a new browser. Defaults to
            playwright chromium; tests inject fakes.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        max_browsers: int = 3,
        max_contexts_per_browser: int = 5,
        *,
        acquire_timeout: float = 30.0,
        idle_timeout: float = 300.0,
        cleanup_interval: float = 30.0,
        min_browsers: int = 1,
        headless: bool = True,
        launcher: Launcher | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_browsers < 1 or max_contexts_per_browser < 1:
            raise ValueError("max_browsers and max_contexts_per_browser must be >= 1")
        self.max_browsers = max_browsers
        self.max_contexts_per_browser = max_contexts_per_browser
        self.acquire_timeout = acquire_timeout
        self.idle_timeout = idle_timeout
        self.cleanup_interval = cleanup_interval
        self.min_browsers = min_browsers
        self.headless = headless
        self._launcher = launcher or self._launch_chromium
        self._clock = clock

        self._cond = asyncio.Condition()
        self._slots: list[_BrowserSlot] = []
        self._outstanding: dict[int, Lease] = {}
        self._ids = itertools.count(1)
        self._closed = False
        self._cleanup_task: asyncio.Task | None = None
        self._playwright: Any = None
        self._playwright_lock = asyncio.Lock()
        self._lease_timeouts = 0
        self._launches = 0

    @classmethod
    def from_config(cls, cfg: PoolCfg, **kwargs: Any) -> BrowserPool:
        return cls(
            cfg.max_browsers,
            cfg.max_contexts_per_browser,
            acquire_timeout=cfg.acquire_timeout,
            idle_timeout=cfg.idle_timeout,
            cleanup_interval=cfg.cleanup_interval,
            min_browsers=cfg.min_browsers,
            headless=cfg.headless,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Leases
    # ------------------------------------------------------------------

    async def acquire(self, timeout: float | None = None) -> Lease:
        """Lease a fresh browser context.

        Raises:
            LeaseTimeoutError: No slot became free within *timeout* seconds.
            FetchError: A browser or context could not be created.
            RuntimeError: The pool has been shut down.
        """
        self._check_open()
        self._ensure_cleanup_task()
        wait = self.acquire_timeout if timeout is None else timeout

        async with self._cond:
            try:
                await asyncio.wait_for(self._cond.wait_for(self._can_reserve), wait)
            except asyncio.TimeoutError:
                self._lease_timeouts += 1
                raise LeaseTimeoutError(
                    f"No browser context free after {wait:.1f}s "
                    f"({self.max_browsers}×{self.max_contexts_per_browser} in use)"
                ) from None
            self._check_open()
            slot = self._ready_slot()
            launching = slot is None
            if launching:
                slot = _BrowserSlot()
                self._slots.append(slot)
            slot.active += 1

        if launching:
            await self._start_browser(slot)

        # The reserved slot goes back on every failure, cancellation included.
        context = None
        try:
            context = await slot.browser.new_context(
                user_agent=_USER_AGENT,
                viewport={"width": 1280, "height": 800},
            )
            await context.route("**/*", _block_heavy_requests)
        except BaseException as exc:
            if context is not None:
                await _close_quietly(context, "context")
            await self._return_slot(slot)
            if isinstance(exc, Exception):
                raise FetchError(f"Could not open browser context: {exc}") from exc
            raise

        lease = Lease(id=next(self._ids), context=context, _slot=slot)
        self._outstanding[lease.id] = lease
        return lease

    async def release(self, lease: Lease) -> None:
        """Close the lease's context and return its slot to the pool.

        Raises:
            RuntimeError: The lease was already released.
        """
        if lease.released:
            if self._closed:
                return
            raise RuntimeError(f"Lease {lease.id} already released")
        lease.released = True
        self._outstanding.pop(lease.id, None)
        await _close_quietly(lease.context, "context")
        await self._return_slot(lease._slot)

    @contextlib.asynccontextmanager
    async def lease(self, timeout: float | None = None) -> AsyncIterator[Lease]:
        """``async with pool.lease() as lease:``; the lease is released on every exit path."""
        held = await self.acquire(timeout)
        try:
            yield held
        finally:
            await self.release(held)

    def stats(self) -> PoolStats:
        return PoolStats(
            browsers=len(self._slots),
            max_browsers=self.max_browsers,
            contexts=sum(s.active for s in self._slots),
            max_contexts_per_browser=self.max_contexts_per_browser,
            lease_timeouts=self._lease_timeouts,
            launches=self._launches,
            leases_outstanding=len(self._outstanding),
        )

    @property
    def outstanding(self) -> int:
        return len(self._outstanding)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def recycle_idle(self) -> int:
        """Close browsers idle past ``idle_timeout`` above ``min_browsers``.

        Browsers with leases checked out are never touched.
        Returns the number of browsers closed.
        """
        async with self._cond:
            now = self._clock()
            idle = [
                s
                for s in self._slots
                if s.browser is not None
                and s.active == 0
                and now - s.last_used >= self.idle_timeout
            ]
            busy = len(self._slots) - len(idle)
            keep = max(0, self.min_browsers - busy)
            doomed = idle[keep:]
            for slot in doomed:
                self._slots.remove(slot)
            if doomed:
                self._cond.notify_all()

        for slot in doomed:
            await _close_quietly(slot.browser, "browser")
        if doomed:
            logger.debug("Recycled %d idle browser(s)", len(doomed))
        return len(doomed)

    async def shutdown(self) -> None:
        """Close every context and browser, then stop playwright. Idempotent."""
        if self._closed:
            return
        self._closed = True

        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._cleanup_task
            self._cleanup_task = None

        leases = list(self._outstanding.values())
        self._outstanding.clear()
        for lease in leases:
            lease.released = True
            await _close_quietly(lease.context, "context")

        async with self._cond:
            slots = list(self._slots)
            self._slots.clear()
            self._cond.notify_all()

        for slot in slots:
            if slot.browser is not None:
                await _close_quietly(slot.browser, "browser")

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser pool shut down (%d browser(s) closed)", len(slots))

    async def __aenter__(self) -> BrowserPool:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.shutdown()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Browser pool has been shut down")

    def _can_reserve(self) -> bool:
        if self._closed:
            return True
        if self._ready_slot() is not None:
            return True
        return len(self._slots) < self.max_browsers

    def _ready_slot(self) -> _BrowserSlot | None:
        """Least-loaded launched browser with a free context, if any."""
        candidates = [
            s
            for s in self._slots
            if s.browser is not None and s.active < self.max_contexts_per_browser
        ]
        return min(candidates, key=lambda s: s.active) if candidates else None

    async def _start_browser(self, slot: _BrowserSlot) -> None:
        try:
            browser = await self._launcher()
        except BaseException as exc:
            async with self._cond:
                if slot in self._slots:
                    self._slots.remove(slot)
                self._cond.notify_all()
            if isinstance(exc, Exception):
                raise FetchError(f"Browser launch failed: {exc}") from exc
            raise
        async with self._cond:
            slot.browser = browser
            slot.last_used = self._clock()
            self._launches += 1
            self._cond.notify_all()
        logger.debug("Launched browser %d/%d", len(self._slots), self.max_browsers)

    async def _return_slot(self, slot: _BrowserSlot) -> None:
        async with self._cond:
            slot.active -= 1
            slot.last_used = self._clock()
            self._cond.notify_all()

    async def _launch_chromium(self) -> Any:
        async with self._playwright_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(
            headless=self.headless, args=_LAUNCH_ARGS
        )

    def _ensure_cleanup_task(self) -> None:
        if self._cleanup_task is None and self.cleanup_interval > 0:
            self._cleanup_task = asyncio.get_running_loop().create_task(
                self._cleanup_loop()
            )

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            await self.recycle_idle()


async def _block_heavy_requests(route: Any) -> None:
    """Abort images/media/fonts/stylesheets and analytics beacons."""
    request = route.request
    if request.resource_type in _BLOCKED_RESOURCE_TYPES or any(
        domain in request.url for domain in _BLOCKED_DOMAINS
    ):
        await route.abort()
    else:
        await route.continue_()


async def _close_quietly(resource: Any, what: str) -> None:
    # A crashed browser cannot be closed cleanly; its slot is freed regardless.
    try:
        await resource.close()
    except Exception as exc:
        logger.warning("Failed to close %s: %s", what, exc)
