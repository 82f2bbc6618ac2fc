"""Repeating timer bound to a single asyncio event loop."""

from __future__ import annotations

import asyncio
from typing import Callable

from dripproxy.core.logging import get_logger


class PeriodicTimer:
    """Fires ``callback`` every ``interval_ms`` milliseconds until stopped.

    ``start()`` on an active timer restarts the countdown. When no loop was
    given and none is running, the timer is marked active but nothing is
    scheduled until ``start()`` is called again from inside a running loop.
    """

    def __init__(
        self,
        interval_ms: int,
        callback: Callable[[], None],
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be greater than zero")
        self.interval_ms = int(interval_ms)
        self.callback = callback
        self.logger = get_logger("dripproxy.timer")
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._active = False
        self.fired = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def scheduled(self) -> bool:
        return self._handle is not None

    def start(self) -> None:
        self._cancel_handle()
        self._active = True
        loop = self._resolve_loop()
        if loop is None:
            self.logger.debug(
                "timer armed without a running event loop",
                extra={"service": "timer", "payload": {"interval_ms": self.interval_ms}},
            )
            return
        self._loop = loop
        self._handle = loop.call_later(self.interval_ms / 1000.0, self._fire)

    def stop(self) -> None:
        self._active = False
        self._cancel_handle()

    def _fire(self) -> None:
        self._handle = None
        if not self._active:
            return
        assert self._loop is not None
        self._handle = self._loop.call_later(self.interval_ms / 1000.0, self._fire)
        self.fired += 1
        self.callback()

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _resolve_loop(self) -> asyncio.AbstractEventLoop | None:
        if self._loop is not None and not self._loop.is_closed():
            return self._loop
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None
