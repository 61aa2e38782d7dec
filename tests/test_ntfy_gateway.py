"""Tests for the ntfy delivery gateway."""

import base64
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from src.config import NtfyAuth
from src.notifications.channels import NotificationGateway
from src.notifications.models import NotificationRequest
from src.notifications.ntfy import NtfyGateway, sanitize_header_value

URL = "https://ntfy.example.com"
TOPIC = "alerts"


def _mock_httpx_client(mock_client_cls: MagicMock, response=None, error=None) -> AsyncMock:
    """Wire up an AsyncClient context-manager mock that returns *response*."""
    mock_client = AsyncMock()
    if error is not None:
        mock_client.post.side_effect = error
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    mock_client_cls.return_value = mock_client
    return mock_client


def _response(status_code: int = 200, text: str = "") -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        text=text,
        request=httpx.Request("POST", f"{URL}/{TOPIC}"),
    )


def _request(**kwargs) -> NotificationRequest:
    defaults = {"title": "High tide", "message": "High tide at 14:05 (2.1m)"}
    defaults.update(kwargs)
    return NotificationRequest(**defaults)


def _sent_headers(mock_client: AsyncMock) -> dict[str, str]:
    return mock_client.post.call_args.kwargs["headers"]


@pytest.fixture
def gateway() -> NtfyGateway:
    return NtfyGateway(URL + "/", TOPIC)


# -- Header sanitizing ---------------------------------------------------------


def test_sanitize_folds_accents() -> None:
    assert sanitize_header_value("Café Rarotonga") == "Cafe Rarotonga"


def test_sanitize_drops_emoji_and_control_chars() -> None:
    assert sanitize_header_value("🌊 High\ntide\x07 ") == "Hightide"


def test_sanitize_collapses_whitespace() -> None:
    assert sanitize_header_value("  Low   tide \t soon ") == "Low tide soon"


# -- Sending -------------------------------------------------------------------


def test_gateway_satisfies_protocol(gateway: NtfyGateway) -> None:
    assert isinstance(gateway, NotificationGateway)
    assert gateway.url == f"{URL}/{TOPIC}"


async def test_send_success(gateway: NtfyGateway) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_httpx_client(mock_cls, _response(200))
        result = await gateway.send_notification(
            _request(priority="high", tags=["ocean", "warning"], click="https://tides.example")
        )

    assert result is True
    mock_cls.assert_called_once_with(timeout=10.0)
    args, kwargs = mock_client.post.call_args
    assert args[0] == f"{URL}/{TOPIC}"
    assert kwargs["content"] == "High tide at 14:05 (2.1m)".encode()
    headers = kwargs["headers"]
    assert headers["Title"] == "High tide"
    assert headers["Priority"] == "high"
    assert headers["Tags"] == "ocean,warning"
    assert headers["Click"] == "https://tides.example"
    assert "Authorization" not in headers


async def test_title_of_only_symbols_falls_back(gateway: NtfyGateway) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_httpx_client(mock_cls, _response(200))
        await gateway.send_notification(_request(title="🌊🌊"))

    assert _sent_headers(mock_client)["Title"] == "Notification"


async def test_invalid_priority_dropped(gateway: NtfyGateway) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_httpx_client(mock_cls, _response(200))
        result = await gateway.send_notification(_request(priority="urgent"))

    assert result is True
    assert "Priority" not in _sent_headers(mock_client)


async def test_basic_auth_header() -> None:
    gw = NtfyGateway(URL, TOPIC, auth=NtfyAuth(scheme="basic", username="u", password="p"))
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_httpx_client(mock_cls, _response(200))
        await gw.send_notification(_request())

    expected = base64.b64encode(b"u:p").decode()
    assert _sent_headers(mock_client)["Authorization"] == f"Basic {expected}"


async def test_bearer_auth_header() -> None:
    gw = NtfyGateway(URL, TOPIC, auth=NtfyAuth(scheme="bearer", token="tk_123"))
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        mock_client = _mock_httpx_client(mock_cls, _response(200))
        await gw.send_notification(_request())

    assert _sent_headers(mock_client)["Authorization"] == "Bearer tk_123"


# -- Failures ------------------------------------------------------------------


async def test_server_error_returns_false(gateway: NtfyGateway) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response(503, "unavailable"))
        assert await gateway.send_notification(_request()) is False


async def test_client_error_returns_false_with_warning(gateway: NtfyGateway, caplog) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, _response(403, "forbidden"))
        with caplog.at_level("WARNING", logger="src.notifications.ntfy"):
            result = await gateway.send_notification(_request())

    assert result is False
    assert any(
        r.levelname == "WARNING" and "client/config error" in r.getMessage()
        for r in caplog.records
    )


async def test_timeout_returns_false(gateway: NtfyGateway) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, error=httpx.ReadTimeout("timed out"))
        assert await gateway.send_notification(_request()) is False


async def test_network_error_returns_false(gateway: NtfyGateway) -> None:
    with patch("src.notifications.ntfy.httpx.AsyncClient") as mock_cls:
        _mock_httpx_client(mock_cls, error=httpx.ConnectError("Connection refused"))
        assert await gateway.send_notification(_request()) is False


# -- Bulk ----------------------------------------------------------------------


async def test_bulk_counts_successes_and_pauses_between_sends(gateway: NtfyGateway) -> None:
    results = [True, False, True]
    with (
        patch.object(gateway, "send_notification", AsyncMock(side_effect=results)),
        patch("src.notifications.ntfy.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
    ):
        sent = await gateway.send_bulk_notifications([_request(), _request(), _request()])

    assert sent == 2
    assert mock_sleep.await_count == 2
    mock_sleep.assert_awaited_with(0.1)


async def test_test_connection_sends_low_priority(gateway: NtfyGateway) -> None:
    with patch.object(gateway, "send_notification", AsyncMock(return_value=True)) as mock_send:
        assert await gateway.test_connection() is True

    request = mock_send.call_args.args[0]
    assert request.priority == "low"
    assert request.tags == ["test"]
