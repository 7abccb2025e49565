import asyncio
import json

import httpx
import pytest

from switchboard.errors import TransportDriverError
from switchboard.services.transport_supervisor import ConnectionOpened
from switchboard.services.whatsapp_service import WhatsAppCloudDriver, parse_cloud_webhook

API_URL = "https://graph.facebook.com/v19.0"


def _webhook(messages, contacts=None, display_phone_number="+52 155 0000 0000"):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA",
                "changes": [
                    {
                        "field": "messages",
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"display_phone_number": display_phone_number, "phone_number_id": "123"},
                            "contacts": contacts or [],
                            "messages": messages,
                        },
                    }
                ],
            }
        ],
    }


class TestParseCloudWebhook:
    def test_text_message(self):
        payload = _webhook(
            [{"from": "5215511111111", "id": "wamid.A", "timestamp": "1714564800", "type": "text", "text": {"body": "hola"}}],
            contacts=[{"wa_id": "5215511111111", "profile": {"name": "Ana"}}],
        )

        events = parse_cloud_webhook(payload)

        assert len(events) == 1
        assert events[0].event_id == "wamid.A"
        assert events[0].from_address == "5215511111111"
        assert events[0].text == "hola"
        assert events[0].display_name == "Ana"
        assert events[0].is_self_sent is False

    def test_non_text_message_has_no_text(self):
        payload = _webhook([{"from": "5215511111111", "id": "wamid.B", "type": "image"}])
        assert parse_cloud_webhook(payload)[0].text is None

    def test_own_number_marked_self_sent(self):
        payload = _webhook([{"from": "5215500000000", "id": "wamid.C", "type": "text", "text": {"body": "eco"}}])
        assert parse_cloud_webhook(payload)[0].is_self_sent is True

    def test_status_only_change(self):
        payload = _webhook([])
        payload["entry"][0]["changes"][0]["value"]["statuses"] = [{"id": "wamid.X", "status": "delivered"}]
        assert parse_cloud_webhook(payload) == []


def _driver(handler):
    return WhatsAppCloudDriver(API_URL, "123", "token", transport=httpx.MockTransport(handler))


class TestWhatsAppCloudDriver:
    def test_open_reports_bound_address(self):
        def handler(request):
            assert request.url.path == "/v19.0/123"
            assert request.headers["Authorization"] == "Bearer token"
            return httpx.Response(200, json={"display_phone_number": "+52 155 0000 0000", "id": "123"})

        driver = _driver(handler)
        updates = []

        async def scenario():
            await driver.open(updates.append)
            await driver.close()

        asyncio.run(scenario())
        assert updates == [ConnectionOpened(bound_address="5215500000000")]

    def test_open_without_credentials_is_logged_out(self):
        driver = WhatsAppCloudDriver(API_URL, None, None)
        with pytest.raises(TransportDriverError) as exc_info:
            asyncio.run(driver.open(lambda update: None))
        assert exc_info.value.logged_out is True

    def test_expired_token_is_logged_out(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "Session has expired", "code": 190}})

        with pytest.raises(TransportDriverError) as exc_info:
            asyncio.run(_driver(handler).open(lambda update: None))
        assert exc_info.value.logged_out is True
        assert exc_info.value.status_code == 400

    def test_server_error_is_not_logged_out(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(TransportDriverError) as exc_info:
            asyncio.run(_driver(handler).open(lambda update: None))
        assert exc_info.value.logged_out is False

    def test_send_text(self):
        sent = []

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"display_phone_number": "5215500000000"})
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"messages": [{"id": "wamid.OUT"}]})

        driver = _driver(handler)

        async def scenario():
            await driver.open(lambda update: None)
            try:
                return await driver.send_text("5215511111111", "hola")
            finally:
                await driver.close()

        assert asyncio.run(scenario()) == "wamid.OUT"
        assert sent[0]["to"] == "5215511111111"
        assert sent[0]["text"]["body"] == "hola"

    def test_send_unauthorized(self):
        def handler(request):
            if request.method == "GET":
                return httpx.Response(200, json={"display_phone_number": "5215500000000"})
            return httpx.Response(401, json={"error": {"message": "Invalid OAuth access token", "code": 190}})

        driver = _driver(handler)

        async def scenario():
            await driver.open(lambda update: None)
            try:
                await driver.send_text("5215511111111", "hola")
            finally:
                await driver.close()

        with pytest.raises(TransportDriverError) as exc_info:
            asyncio.run(scenario())
        assert exc_info.value.logged_out is True

    def test_send_before_open(self):
        with pytest.raises(TransportDriverError):
            asyncio.run(_driver(lambda request: httpx.Response(200)).send_text("5215511111111", "hola"))
