"""
Messages exchanged between the orchestrator and its collaborators.

The portal server and the activity timer send commands; the orchestrator is
the only consumer. The orchestrator answers the server with responses and
reports the session outcome on the exit channel.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

from wificonnect.core.errors import ChannelError

T = TypeVar("T")


# ============================================================================
# Commands (server/timer -> orchestrator)
# ============================================================================


@dataclass(frozen=True)
class Activate:
    """The user's browser requested the network list."""


@dataclass(frozen=True)
class Timeout:
    """The activity timer expired."""


@dataclass(frozen=True)
class Connect:
    """The user submitted credentials for a network."""

    ssid: str
    passphrase: str = field(default="", repr=False)


Command = Union[Activate, Timeout, Connect]


# ============================================================================
# Responses (orchestrator -> server)
# ============================================================================


@dataclass(frozen=True)
class AccessPointSsids:
    """Ssids of the current access point snapshot, in scan order."""

    ssids: list[str]


Response = AccessPointSsids


# ============================================================================
# Session outcome (orchestrator -> process entry point)
# ============================================================================


@dataclass(frozen=True)
class ExitResult:
    """Outcome of one onboarding session."""

    success: bool
    message: str | None = None

    @classmethod
    def ok(cls) -> ExitResult:
        return cls(success=True)

    @classmethod
    def error(cls, message: str) -> ExitResult:
        return cls(success=False, message=message)


# ============================================================================
# Channel
# ============================================================================


class _Closed:
    """Marker queued when a channel is closed."""


_CLOSED = _Closed()


class Channel(Generic[T]):
    """
    Unbounded FIFO between execution contexts.

    Sending never blocks. Items sent before close() are still delivered in
    order; after that, receive() raises ChannelError. Sending on a closed
    channel raises ChannelError.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, item: T) -> None:
        if self._closed:
            raise ChannelError(f"Sending on closed {self.name} channel")
        self._queue.put_nowait(item)

    async def receive(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            # Keep the marker queued for any other waiter
            self._queue.put_nowait(_CLOSED)
            raise ChannelError(f"Receiving on closed {self.name} channel")
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<Channel {self.name} {state} pending={self._queue.qsize()}>"
