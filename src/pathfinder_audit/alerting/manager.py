"""Alert dispatcher: a bounded queue between detection and delivery."""
from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Union

import structlog

from pathfinder_audit.alerting.models import SecurityAlert
from pathfinder_audit.alerting.sinks import AlertSink

logger = structlog.get_logger(__name__)

AlertListener = Callable[[SecurityAlert], Union[Awaitable[None], None]]


class AlertDispatcher:
    """Fans security alerts out to sinks and subscribed listeners.

    :meth:`publish` only enqueues, so the audit ``log()`` path never waits on
    delivery.  A background worker started by :meth:`start` drains the queue.
    Sink and listener failures are logged and never propagated.

    Uses a builder-style API for fluent configuration::

        dispatcher = (
            AlertDispatcher()
            .add_sink(LogAlertSink())
            .add_sink(SlackAlertSink(webhook_url))
            .set_cooldown(30.0)
        )
        unsubscribe = dispatcher.subscribe(push_to_websocket)
    """

    def __init__(self, maxsize: int = 1000) -> None:
        self._queue: asyncio.Queue[SecurityAlert] = asyncio.Queue(maxsize=maxsize)
        self._sinks: list[AlertSink] = []
        self._listeners: list[AlertListener] = []
        self._cooldowns: dict[str, float] = {}
        self._cooldown_seconds: float = 0.0
        self._worker: asyncio.Task[None] | None = None
        self.dropped = 0

    def add_sink(self, sink: AlertSink) -> AlertDispatcher:
        """Add a sink for alert delivery."""
        self._sinks.append(sink)
        return self

    def subscribe(self, listener: AlertListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def set_cooldown(self, seconds: float) -> AlertDispatcher:
        """Suppress repeats of the same threat from the same actor within *seconds*."""
        self._cooldown_seconds = seconds
        return self

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # -- publishing ---------------------------------------------------------

    def publish(self, alert: SecurityAlert) -> bool:
        """Enqueue *alert* without waiting.  Returns ``False`` if the queue is full."""
        try:
            self._queue.put_nowait(alert)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error(
                "alert_queue_full",
                alert_id=alert.alert_id,
                threat_type=alert.threat_type,
                dropped=self.dropped,
            )
            return False
        return True

    def _cooled_down(self, alert: SecurityAlert) -> bool:
        if self._cooldown_seconds <= 0:
            return False
        key = f"{alert.threat_type}:{alert.actor or alert.ip_address or '-'}"
        now = time.monotonic()
        last = self._cooldowns.get(key)
        if last is not None and (now - last) < self._cooldown_seconds:
            return True
        self._cooldowns[key] = now
        return False

    async def deliver(self, alert: SecurityAlert) -> None:
        """Send *alert* to every sink and listener right now."""
        if self._cooled_down(alert):
            logger.debug("alert_suppressed_cooldown", threat_type=alert.threat_type)
            return
        for sink in self._sinks:
            try:
                await sink.send(alert)
            except Exception as exc:  # noqa: BLE001
                logger.error("alert_sink_error", sink=type(sink).__name__, error=str(exc))
        for listener in list(self._listeners):
            try:
                result = listener(alert)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001
                logger.error("alert_listener_error", listener=repr(listener), error=str(exc))

    # -- worker lifecycle ---------------------------------------------------

    async def _run(self) -> None:
        while True:
            alert = await self._queue.get()
            try:
                await self.deliver(alert)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="audit-alert-dispatcher")

    async def drain(self) -> None:
        """Wait until every queued alert has been delivered."""
        if self.running:
            await self._queue.join()
            return
        while not self._queue.empty():
            alert = self._queue.get_nowait()
            try:
                await self.deliver(alert)
            finally:
                self._queue.task_done()

    async def stop(self) -> None:
        """Deliver what is queued, then stop the worker."""
        await self.drain()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
