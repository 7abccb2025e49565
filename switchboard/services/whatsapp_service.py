"""WhatsApp Cloud API transport driver and webhook parsing."""

from typing import Any, Callable, Optional, Union

import httpx

from switchboard.errors import TransportDriverError
from switchboard.logging_config import get_logger
from switchboard.schemas.transport import TransportEvent
from switchboard.schemas.webhook import CloudWebhook
from switchboard.services.ingress_service import normalize_address
from switchboard.services.transport_supervisor import ConnectionOpened, TransportUpdate

logger = get_logger("whatsapp_service")

# Graph API error code for an expired or revoked access token.
GRAPH_AUTH_ERROR_CODE = 190


class WhatsAppCloudDriver:
    def __init__(
        self,
        api_url: str,
        phone_id: Optional[str],
        token: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.phone_id = phone_id
        self.token = token
        self.timeout = timeout
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def open(self, emit: Callable[[TransportUpdate], None]) -> None:
        """Check credentials against the phone number endpoint and report the bound address."""
        if not self.phone_id or not self.token:
            raise TransportDriverError("WhatsApp Cloud credentials not configured", logged_out=True)

        await self.close()
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            headers={"Authorization": f"Bearer {self.token}"},
            timeout=self.timeout,
            transport=self.transport,
        )

        try:
            response = await self._client.get(
                f"/{self.phone_id}",
                params={"fields": "display_phone_number,verified_name"},
            )
        except (httpx.HTTPError, RuntimeError) as e:
            # RuntimeError: client closed by a concurrent close() while the check was in flight.
            await self.close()
            raise TransportDriverError(f"WhatsApp Cloud unreachable: {e}") from e

        if response.status_code != 200:
            await self.close()
            raise _error_from_response(response, "WhatsApp Cloud credential check failed")

        data = response.json()
        bound_address = normalize_address(data.get("display_phone_number")) or self.phone_id
        logger.info(
            "WhatsApp Cloud phone verified",
            extra={"context": {"bound_address": bound_address, "verified_name": data.get("verified_name")}},
        )
        emit(ConnectionOpened(bound_address=bound_address))

    async def close(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    async def send_text(self, address: str, text: str) -> Optional[str]:
        if self._client is None:
            raise TransportDriverError("WhatsApp Cloud client is not open")

        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": address,
            "type": "text",
            "text": {"preview_url": False, "body": text},
        }
        try:
            response = await self._client.post(f"/{self.phone_id}/messages", json=payload)
        except httpx.HTTPError as e:
            raise TransportDriverError(f"WhatsApp send failed: {e}") from e

        if response.status_code >= 400:
            raise _error_from_response(response, "WhatsApp send failed")

        messages = response.json().get("messages") or []
        return messages[0].get("id") if messages else None


def _error_from_response(response: httpx.Response, prefix: str) -> TransportDriverError:
    try:
        error = response.json().get("error") or {}
    except ValueError:
        error = {}
    logged_out = response.status_code == 401 or error.get("code") == GRAPH_AUTH_ERROR_CODE
    detail = error.get("message") or response.text[:200]
    return TransportDriverError(
        f"{prefix}: HTTP {response.status_code} {detail}",
        logged_out=logged_out,
        status_code=response.status_code,
    )


def parse_cloud_webhook(payload: Union[CloudWebhook, dict[str, Any]]) -> list[TransportEvent]:
    """Flatten a Cloud API webhook body into transport events.

    Non-text messages produce events without text (dropped later by ingress);
    delivery statuses are ignored.
    """
    webhook = payload if isinstance(payload, CloudWebhook) else CloudWebhook.model_validate(payload)
    events: list[TransportEvent] = []

    for entry in webhook.entry:
        for change in entry.changes:
            value = change.value
            own_address = normalize_address(value.metadata.display_phone_number) if value.metadata else None
            names = {
                contact.wa_id: contact.profile.name
                for contact in value.contacts
                if contact.wa_id and contact.profile
            }

            for message in value.messages:
                text = message.text.body if message.type == "text" and message.text else None
                sender = normalize_address(message.from_address)
                events.append(
                    TransportEvent(
                        event_id=message.id,
                        from_address=message.from_address,
                        is_self_sent=bool(own_address and sender == own_address),
                        text=text,
                        display_name=names.get(message.from_address),
                    )
                )

    return events
