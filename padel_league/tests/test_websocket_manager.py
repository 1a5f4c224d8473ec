"""
Unit tests for WebSocket manager.
Tests connection management, publishing, and stale-connection cleanup.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from padel_league.services.websocket_manager import (
    WEBSOCKET_TIMEOUT_SECONDS,
    WebSocketManager,
    get_websocket_manager,
)
from padel_league.utils.datetime_utils import utcnow


@pytest_asyncio.fixture
async def ws_manager():
    """Create a fresh WebSocket manager for each test."""
    return WebSocketManager()


@pytest.fixture
def mock_websocket():
    """Create a mock WebSocket connection."""
    ws = AsyncMock()
    ws.send_text = AsyncMock()
    return ws


@pytest.mark.asyncio
async def test_connect_and_disconnect(ws_manager, mock_websocket):
    await ws_manager.connect(1, mock_websocket)
    assert await ws_manager.get_connection_count(1) == 1
    assert mock_websocket in ws_manager.connection_timestamps

    await ws_manager.disconnect(1, mock_websocket)

    assert await ws_manager.get_connection_count(1) == 0
    assert mock_websocket not in ws_manager.connection_timestamps


@pytest.mark.asyncio
async def test_publish_reaches_every_connection(ws_manager):
    ws1, ws2 = AsyncMock(), AsyncMock()
    await ws_manager.connect(1, ws1)
    await ws_manager.connect(1, ws2)
    event = {"type": "notification", "notification": {"id": 1, "type": "MATCH_CREATED"}}

    assert await ws_manager.publish(1, event) is True

    for ws in (ws1, ws2):
        ws.send_text.assert_called_once()
        assert json.loads(ws.send_text.call_args[0][0]) == event


@pytest.mark.asyncio
async def test_publish_without_connection_is_not_delivered(ws_manager):
    assert await ws_manager.publish(1, {"type": "notification"}) is False


@pytest.mark.asyncio
async def test_failed_send_drops_connection(ws_manager):
    broken = AsyncMock()
    broken.send_text = AsyncMock(side_effect=RuntimeError("socket closed"))
    await ws_manager.connect(1, broken)

    assert await ws_manager.publish(1, {"type": "notification"}) is False
    assert await ws_manager.get_connection_count(1) == 0


@pytest.mark.asyncio
async def test_one_bad_connection_does_not_block_others(ws_manager, mock_websocket):
    broken = AsyncMock()
    broken.send_text = AsyncMock(side_effect=RuntimeError("socket closed"))
    await ws_manager.connect(1, broken)
    await ws_manager.connect(1, mock_websocket)

    assert await ws_manager.publish(1, {"type": "notification"}) is True
    assert await ws_manager.get_connection_count(1) == 1


@pytest.mark.asyncio
async def test_cleanup_stale_connections(ws_manager, mock_websocket):
    fresh = AsyncMock()
    await ws_manager.connect(1, mock_websocket)
    await ws_manager.connect(2, fresh)
    ws_manager.connection_timestamps[mock_websocket] = utcnow() - timedelta(seconds=WEBSOCKET_TIMEOUT_SECONDS + 5)

    await ws_manager.cleanup_stale_connections()

    assert await ws_manager.get_connection_count(1) == 0
    assert await ws_manager.get_connection_count(2) == 1


def test_get_websocket_manager_is_shared():
    assert get_websocket_manager() is get_websocket_manager()
