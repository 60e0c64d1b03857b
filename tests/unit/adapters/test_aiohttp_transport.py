from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from alpa.adapters.aiohttp_transport import AiohttpTransport


def fake_session(ws: object) -> MagicMock:
    session = MagicMock()
    session.closed = False
    session.ws_connect = AsyncMock(return_value=ws)
    session.close = AsyncMock()
    return session


@pytest.mark.asyncio
async def test_connect_turns_off_autoping():
    ws = object()
    session = fake_session(ws)
    transport = AiohttpTransport(session=session)

    result = await transport.connect("wss://example.test/stream", timeout_s=1.0)

    assert result is ws
    session.ws_connect.assert_awaited_once_with("wss://example.test/stream", autoping=False)


@pytest.mark.asyncio
async def test_injected_session_left_open():
    session = fake_session(object())
    transport = AiohttpTransport(session=session)

    await transport.aclose()

    session.close.assert_not_awaited()


@pytest.mark.asyncio
async def test_owned_session_created_lazily_and_closed():
    session = fake_session(object())
    with patch("alpa.adapters.aiohttp_transport.aiohttp.ClientSession", return_value=session) as factory:
        transport = AiohttpTransport()
        factory.assert_not_called()

        await transport.connect("wss://example.test/stream", timeout_s=1.0)
        await transport.connect("wss://example.test/stream", timeout_s=1.0)
        await transport.aclose()

    factory.assert_called_once()
    session.close.assert_awaited_once()
