"""Idle lifecycle of the shared browser.

The controller keeps the browser warm across bursts of requests and closes
it after a period without traffic::

    Cold ──request──▶ Warm ──timer──▶ Cooling ──timer (counter ≥ threshold)──▶ Cold
                        ▲                │
                        └───request──────┘

State lives in an :class:`IdleStateStore`: the accumulated idle counter
(seconds) and the instant the next wake-up is scheduled for.  Every wake-up
adds one tick to the counter; every completed request resets it to zero and
arms a wake-up if none is pending.  Once the counter reaches the keep-alive
threshold the browser is closed and no further wake-up is scheduled until
the next request.

The Redis store persists both values so that a restarted worker picks up
where the previous one left off; wake-ups themselves are delivered by an
:class:`AsyncioWakeTimer` task inside the running process.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Protocol

import redis.asyncio as aioredis

from url2mda.browser.handle import BrowserHandleManager
from url2mda.core.metrics import browser_idle_shutdowns_total

logger = logging.getLogger(__name__)

WakeCallback = Callable[[], Awaitable[None]]


class LifecycleState(str, enum.Enum):
    """Observable state of the shared browser."""

    COLD = "cold"
    WARM = "warm"
    COOLING = "cooling"


# ---------------------------------------------------------------------------
# Wake timer
# ---------------------------------------------------------------------------


class AsyncioWakeTimer:
    """Runs a callback at a wall-clock instant using a sleeping asyncio task.

    At most one wake-up is pending; arming again replaces it.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._callback: WakeCallback | None = None
        self._task: asyncio.Task[None] | None = None

    def bind(self, callback: WakeCallback) -> None:
        self._callback = callback

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self, when: float) -> None:
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._run(when))

    def cancel(self) -> None:
        task, self._task = self._task, None
        # The firing task may re-arm from inside its own callback.
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, when: float) -> None:
        await asyncio.sleep(max(0.0, when - self._clock()))
        if self._task is asyncio.current_task():
            self._task = None
        if self._callback is None:
            logger.warning("lifecycle: wake timer fired with no callback bound")
            return
        await self._callback()


# ---------------------------------------------------------------------------
# State stores
# ---------------------------------------------------------------------------


class IdleStateStore(Protocol):
    """Persisted idle counter plus the externally scheduled wake-up."""

    async def get(self) -> int: ...

    async def put(self, counter: int) -> None: ...

    async def get_wake(self) -> float | None: ...

    async def schedule_wake_at(self, when: float) -> None: ...

    async def cancel_wake(self) -> None: ...

    def bind(self, callback: WakeCallback) -> None: ...


class InMemoryIdleStateStore:
    """Process-local :class:`IdleStateStore`.

    Without a *timer* scheduled wake-ups are only recorded, which lets tests
    drive the controller by calling ``alarm()`` directly.
    """

    def __init__(self, timer: AsyncioWakeTimer | None = None) -> None:
        self.counter = 0
        self.wake_at: float | None = None
        self._timer = timer

    def bind(self, callback: WakeCallback) -> None:
        if self._timer is not None:
            self._timer.bind(callback)

    async def get(self) -> int:
        return self.counter

    async def put(self, counter: int) -> None:
        self.counter = counter

    async def get_wake(self) -> float | None:
        return self.wake_at

    async def schedule_wake_at(self, when: float) -> None:
        self.wake_at = when
        if self._timer is not None:
            self._timer.arm(when)

    async def cancel_wake(self) -> None:
        self.wake_at = None
        if self._timer is not None:
            self._timer.cancel()


class RedisIdleStateStore:
    """:class:`IdleStateStore` persisting the counter and wake instant in Redis.

    Args:
        redis_client: An initialised ``redis.asyncio.Redis`` connection.
        timer: Delivers the wake-ups inside this process.
        namespace: Key prefix.
    """

    def __init__(
        self,
        redis_client: aioredis.Redis,
        timer: AsyncioWakeTimer | None = None,
        namespace: str = "url2mda:idle:",
    ) -> None:
        self._redis = redis_client
        self._timer = timer or AsyncioWakeTimer()
        self._counter_key = namespace + "counter"
        self._wake_key = namespace + "wake"

    def bind(self, callback: WakeCallback) -> None:
        self._timer.bind(callback)

    async def get(self) -> int:
        value = await self._redis.get(self._counter_key)
        return int(value) if value is not None else 0

    async def put(self, counter: int) -> None:
        await self._redis.set(self._counter_key, counter)

    async def get_wake(self) -> float | None:
        value = await self._redis.get(self._wake_key)
        return float(value) if value is not None else None

    async def schedule_wake_at(self, when: float) -> None:
        await self._redis.set(self._wake_key, repr(when))
        self._timer.arm(when)

    async def cancel_wake(self) -> None:
        await self._redis.delete(self._wake_key)
        self._timer.cancel()


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


class IdleLifecycleController:
    """Timer-driven keep-alive state machine for the shared browser.

    Args:
        handles: The browser handle manager to close when idle.
        store: Where the counter and wake-up live.
        keep_alive_seconds: Idle time after which the browser is closed.
        tick_seconds: Wake-up interval; each firing adds this to the counter.
        clock: Wall-clock source, injectable for tests.
    """

    def __init__(
        self,
        handles: BrowserHandleManager,
        store: IdleStateStore,
        keep_alive_seconds: int = 60,
        tick_seconds: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.handles = handles
        self.store = store
        self.keep_alive_seconds = keep_alive_seconds
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._counter = 0
        self._in_flight = 0
        self._armed = False
        store.bind(self.alarm)

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def state(self) -> LifecycleState:
        if not self.handles.is_open:
            return LifecycleState.COLD
        if self._counter > 0:
            return LifecycleState.COOLING
        return LifecycleState.WARM

    async def load(self) -> None:
        """Restore persisted state after a (re)start and re-arm a pending wake-up."""
        self._counter = await self.store.get()
        wake_at = await self.store.get_wake()
        if wake_at is not None:
            await self.store.schedule_wake_at(max(wake_at, self._clock()))
            self._armed = True
        logger.info("lifecycle: loaded idle counter %d (wake pending: %s)", self._counter, self._armed)

    def request_started(self) -> None:
        self._counter = 0
        self._in_flight += 1

    async def request_completed(self) -> None:
        """Reset the idle counter and arm a wake-up if none is pending."""
        self._counter = 0
        self._in_flight = max(0, self._in_flight - 1)
        try:
            await self.store.put(0)
            if await self.store.get_wake() is None:
                logger.debug("lifecycle: no wake-up pending, arming keep-alive timer")
                await self.store.schedule_wake_at(self._clock() + self.tick_seconds)
            self._armed = True
        except Exception:
            logger.exception("lifecycle: failed to persist idle state after request")

    @asynccontextmanager
    async def track_request(self) -> AsyncIterator[None]:
        """Scope one inbound request: reset on entry, reset and arm on exit."""
        self.request_started()
        try:
            yield
        finally:
            await self.request_completed()

    async def alarm(self) -> None:
        """Handle one wake-up.

        Adds a tick to the counter.  Below the threshold the next wake-up is
        armed; at or above it the browser is closed and nothing is re-armed.
        Errors re-arm the timer so a transient store failure cannot strand an
        open browser.
        """
        try:
            # The wake-up being handled is consumed.
            await self.store.cancel_wake()
            self._armed = False
            if self._in_flight:
                # Requests still running: not idle.
                self._counter = 0
            else:
                self._counter = await self.store.get() + self.tick_seconds
            if self._in_flight or self._counter < self.keep_alive_seconds:
                logger.debug(
                    "lifecycle: idle for %ds, re-arming (threshold %ds)",
                    self._counter,
                    self.keep_alive_seconds,
                )
                await self.store.schedule_wake_at(self._clock() + self.tick_seconds)
                self._armed = True
            elif self.handles.is_open:
                logger.info(
                    "lifecycle: idle for %ds, closing browser", self._counter
                )
                await self.handles.close()
                browser_idle_shutdowns_total.inc()
            await self.store.put(self._counter)
        except Exception:
            logger.exception("lifecycle: error while handling wake-up")
            try:
                await self.store.schedule_wake_at(self._clock() + self.tick_seconds)
                self._armed = True
            except Exception:
                logger.exception("lifecycle: failed to re-arm wake-up after error")

    async def shutdown(self) -> None:
        """Cancel any pending wake-up and close the browser (application shutdown)."""
        try:
            await self.store.cancel_wake()
        except Exception:
            logger.exception("lifecycle: failed to cancel wake-up on shutdown")
        self._armed = False
        await self.handles.close()
