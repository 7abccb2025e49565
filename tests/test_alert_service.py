import asyncio
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx

from switchboard.services.alert_service import (
    alert_critical,
    alert_heal_report,
    alert_transport_logged_out,
    alert_warning,
    format_alert,
    send_alert,
)


def _mock_client(mock_client_class, status_code=200):
    mock_client = MagicMock()
    mock_client.post = AsyncMock(return_value=Mock(status_code=status_code))
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestSendAlert:
    @patch("switchboard.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("switchboard.services.alert_service.ALERT_CHAT_ID", None)
    def test_returns_false_when_not_configured(self):
        assert asyncio.run(send_alert("ERROR", "Test message")) is False

    @patch("switchboard.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("switchboard.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("switchboard.services.alert_service.httpx.AsyncClient")
    def test_sends_alert_to_telegram(self, mock_client_class):
        mock_client = _mock_client(mock_client_class)

        result = asyncio.run(send_alert("ERROR", "Test error message"))

        assert result is True
        mock_client.post.assert_awaited_once()
        call_args = mock_client.post.call_args
        assert "api.telegram.org" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]

    @patch("switchboard.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("switchboard.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("switchboard.services.alert_service.httpx.AsyncClient")
    def test_includes_context_in_message(self, mock_client_class):
        mock_client = _mock_client(mock_client_class)

        asyncio.run(send_alert("ERROR", "Test message", {"address": "5215511111111"}))

        text = mock_client.post.call_args[1]["json"]["text"]
        assert "address" in text
        assert "5215511111111" in text

    @patch("switchboard.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("switchboard.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("switchboard.services.alert_service.httpx.AsyncClient")
    def test_returns_false_on_http_error(self, mock_client_class):
        mock_client = _mock_client(mock_client_class)
        mock_client.post.side_effect = httpx.ConnectError("Network error")

        assert asyncio.run(send_alert("ERROR", "Test message")) is False

    @patch("switchboard.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("switchboard.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("switchboard.services.alert_service.httpx.AsyncClient")
    def test_returns_false_on_non_200(self, mock_client_class):
        _mock_client(mock_client_class, status_code=400)

        assert asyncio.run(send_alert("ERROR", "Test message")) is False


class TestAlertShortcuts:
    @patch("switchboard.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_alert_warning(self, mock_send):
        asyncio.run(alert_warning("Warning message"))
        mock_send.assert_awaited_once_with("WARNING", "Warning message", None)

    @patch("switchboard.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_alert_critical(self, mock_send):
        asyncio.run(alert_critical("Critical message", {"key": "value"}))
        mock_send.assert_awaited_once_with("CRITICAL", "Critical message", {"key": "value"})

    @patch("switchboard.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_transport_logged_out(self, mock_send):
        asyncio.run(alert_transport_logged_out("5215500000000"))
        level, message, context = mock_send.call_args[0]
        assert level == "CRITICAL"
        assert "logged out" in message
        assert context == {"bound_address": "5215500000000"}

    @patch("switchboard.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_heal_report_skips_clean_report(self, mock_send):
        assert asyncio.run(alert_heal_report({"healed_count": 0, "details": []}, source="admin")) is False
        mock_send.assert_not_awaited()

    @patch("switchboard.services.alert_service.send_alert", new_callable=AsyncMock)
    def test_heal_report_lists_first_fixes(self, mock_send):
        report = {"healed_count": 7, "details": [f"fix {i}" for i in range(7)]}
        asyncio.run(alert_heal_report(report, source="maintenance"))

        level, message, context = mock_send.call_args[0]
        assert level == "WARNING"
        assert "7" in message
        assert context["source"] == "maintenance"
        assert context["fix_1"] == "fix 0"
        assert "fix_6" not in context


class TestFormatAlert:
    def test_includes_level_and_message(self):
        text = format_alert("CRITICAL", "Transport down")
        assert text.startswith("🔥")
        assert "CRITICAL" in text
        assert "Transport down" in text
        assert "```" not in text

    def test_unknown_level_gets_generic_mark(self):
        assert format_alert("NOTICE", "hello").startswith("📢")
