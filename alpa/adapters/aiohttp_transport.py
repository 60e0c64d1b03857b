from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from alpa.ports.transport import Transport, WebSocket

logger = logging.getLogger(__name__)


class AiohttpTransport(Transport):
    """
    WebSocket transport over a lazily created aiohttp ClientSession.

    autoping is off so PING frames reach the connection, which answers them
    itself; one session is reused across reconnects and closed by aclose().
    """

    def __init__(self, session: Optional[aiohttp.ClientSession] = None) -> None:
        self._session = session
        self._owns_session = session is None

    async def connect(self, url: str, *, timeout_s: float) -> WebSocket:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True

        logger.debug(f"Opening WebSocket to {url}")
        return await asyncio.wait_for(
            self._session.ws_connect(url, autoping=False),
            timeout=timeout_s,
        )

    async def aclose(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
