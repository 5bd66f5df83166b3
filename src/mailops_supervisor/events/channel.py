#!/usr/bin/env python3
"""
Event Channel - Notifications from the supervisor and workflow to the host.

Producers call an observer with one event at a time, in emission order.
An observer is any callable accepting an event; EventChannel is a queue
backed observer the host application can drain at its own pace.
"""

import logging
from dataclasses import dataclass
from queue import Empty, Queue
from typing import Any, Callable, List, Optional


STREAM_STDOUT = "stdout"
STREAM_STDERR = "stderr"


@dataclass(frozen=True)
class LogLine:
    """One line written by the worker process."""

    stream: str
    text: str


@dataclass(frozen=True)
class StatusChanged:
    """Supervisor lifecycle transition."""

    state: Any


@dataclass(frozen=True)
class StepProgress:
    """Workflow phase notification."""

    step: str
    status: str
    percent: Optional[int] = None


@dataclass(frozen=True)
class WorkflowFailed:
    """Workflow halted in the given phase."""

    phase: str
    message: str


Observer = Callable[[Any], None]

logger = logging.getLogger(__name__)


def notify(observer: Optional[Observer], event: Any) -> None:
    """Deliver an event, logging observer failures instead of propagating them."""
    if observer is None:
        return
    try:
        observer(event)
    except Exception as e:
        logger.error(f"Observer failed handling {type(event).__name__}: {e}")


class EventChannel:
    """Thread-safe FIFO of events."""

    def __init__(self):
        self._queue: Queue = Queue()

    def __call__(self, event: Any) -> None:
        self.publish(event)

    def publish(self, event: Any) -> None:
        self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Any:
        """Block for the next event; raises queue.Empty on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self) -> List[Any]:
        """Return every pending event in emission order."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except Empty:
                return events
