"""
Event Sink - observer registry the scheduler publishes to.

Listeners may be plain callables or coroutine functions. A failing listener
is logged and skipped; it never interrupts the publisher or other listeners.
"""

import asyncio
import logging
from typing import Any, Callable, Union

from pool_monitor.models import Signal


logger = logging.getLogger(__name__)


Listener = Callable[..., Any]


class EventSink:
    """
    Signal -> listeners registry.

    Usage:
        sink = EventSink()
        sink.on(Signal.DATA, handle_event)
        sink.on("state_changed", save_checkpoint)
    """

    def __init__(self) -> None:
        self._listeners: dict[Signal, list[Listener]] = {signal: [] for signal in Signal}

    def on(self, signal: Union[Signal, str], listener: Listener) -> None:
        """Register ``listener`` for ``signal``."""
        self._listeners[Signal(signal)].append(listener)

    def off(self, signal: Union[Signal, str], listener: Listener) -> bool:
        """Remove ``listener``; returns False if it was not registered."""
        listeners = self._listeners[Signal(signal)]
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def remove_all_listeners(self, signal: Union[Signal, str, None] = None) -> None:
        if signal is None:
            for listeners in self._listeners.values():
                listeners.clear()
        else:
            self._listeners[Signal(signal)].clear()

    def listener_count(self, signal: Union[Signal, str]) -> int:
        return len(self._listeners[Signal(signal)])

    async def emit(self, signal: Union[Signal, str], *args: Any) -> None:
        """Call every listener of ``signal`` in registration order."""
        signal = Signal(signal)
        for listener in list(self._listeners[signal]):
            try:
                result = listener(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"[sink] Listener error on {signal.value}: {e}")
