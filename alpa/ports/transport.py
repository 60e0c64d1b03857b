"""Transport Port Interface.

Contract: Open one WebSocket connection to a URL. The returned socket yields
messages with `.type` (aiohttp.WSMsgType) and `.data`, and ends iteration
when the peer closes. Pings are surfaced to the caller, not auto-answered.
"""

from __future__ import annotations

from typing import Any, AsyncIterator, Protocol


class WebSocket(Protocol):
    @property
    def closed(self) -> bool: ...

    def __aiter__(self) -> AsyncIterator[Any]: ...

    async def send_str(self, data: str) -> None: ...

    async def pong(self, message: bytes = b"") -> None: ...

    async def close(self) -> Any: ...

    def exception(self) -> BaseException | None: ...


class Transport(Protocol):
    async def connect(self, url: str, *, timeout_s: float) -> WebSocket: ...

    async def aclose(self) -> None: ...
