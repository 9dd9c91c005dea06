"""
WhatsApp Transport — WhatsApp Business Cloud API integration.

Provides:
- Connection handshake against the phone-number resource
- Outbound text
- Outbound media: remote URLs passed by reference ("link"), local bytes
  uploaded to the media endpoint first and sent by id
- Per-category payload shaping (audio carries no caption, documents carry a
  filename)
- API error bodies surfaced verbatim as TransportError messages
"""
from __future__ import annotations

import structlog
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from channels.base import DeliveryTransport, TransportError
from config.settings import TransportConfig
from models.schemas import MediaCategory, MediaPayload

logger = structlog.get_logger()


def _api_error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}: {response.text[:200]}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return error["message"]
    return f"HTTP {response.status_code}"


class WhatsAppCloudTransport(DeliveryTransport):
    """
    WhatsApp Business Cloud API transport.

    The Cloud API is stateless HTTP; "connected" means the phone-number
    resource answered with the configured token. A 401 from any call drops
    the connection so the queue processor stops sweeping until a reconnect.
    """

    channel = "whatsapp"

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        super().__init__()
        self._config = TransportConfig()
        self._access_token: str = ""
        self._client = client

    async def initialize(self, config: TransportConfig, credentials: Optional[dict[str, Any]] = None) -> None:
        self._config = config
        credentials = credentials or {}
        self._access_token = config.access_token or credentials.get("access_token", "")
        if not config.phone_number_id and credentials.get("phone_number_id"):
            self._config.phone_number_id = credentials["phone_number_id"]
        self._initialized = True

    @property
    def _base(self) -> str:
        return f"{self._config.base_url.rstrip('/')}/{self._config.api_version}/{self._config.phone_number_id}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s)
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, max=10),
        reraise=True,
    )
    async def _post_raw(self, url: str, **kwargs) -> httpx.Response:
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {self._access_token}"}
        return await client.post(url, headers=headers, **kwargs)

    async def _call(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        url = f"{self._base}{path}"
        try:
            if method == "POST":
                response = await self._post_raw(url, **kwargs)
            else:
                client = await self._get_client()
                response = await client.request(
                    method, url, headers={"Authorization": f"Bearer {self._access_token}"}, **kwargs,
                )
        except httpx.TimeoutException as e:
            raise TransportError(f"WhatsApp request timed out: {e}", self.channel, retryable=True) from e
        except httpx.HTTPError as e:
            raise TransportError(f"WhatsApp request failed: {e}", self.channel, retryable=True) from e

        if response.status_code == 401:
            self.connection.notify("closed", error="unauthorized")
        if response.is_error:
            raise TransportError(_api_error_message(response), self.channel,
                                 retryable=response.status_code >= 500)
        return response.json() if response.content else {}

    # ── Connection ────────────────────────────────────────────

    async def _open(self) -> None:
        if not self._initialized:
            raise TransportError("Transport not initialized", self.channel)
        if not self._config.phone_number_id or not self._access_token:
            raise TransportError("WhatsApp phone_number_id and access_token are required", self.channel)
        info = await self._call("GET", "", params={"fields": "display_phone_number,verified_name"})
        logger.info("whatsapp_connected", number=info.get("display_phone_number", ""))

    async def shutdown(self) -> None:
        await super().shutdown()
        if self._client:
            await self._client.aclose()

    # ── Send ──────────────────────────────────────────────────

    async def _send_message(self, recipient: str, msg_type: str, body: dict[str, Any]) -> dict[str, Any]:
        self._require_connected()
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": msg_type,
            msg_type: body,
        }
        result = await self._call("POST", "/messages", json=payload)
        msg_id = (result.get("messages") or [{}])[0].get("id", "")
        logger.info("whatsapp_message_sent", to=recipient, type=msg_type, msg_id=msg_id)
        return {"status": "sent", "channel_message_id": msg_id}

    async def send_text(self, recipient: str, text: str) -> dict[str, Any]:
        return await self._send_message(recipient, "text", {"body": text, "preview_url": False})

    async def _upload(self, media: MediaPayload) -> str:
        result = await self._call(
            "POST", "/media",
            data={"messaging_product": "whatsapp", "type": media.mime_type},
            files={"file": (media.filename or "upload", media.data or b"", media.mime_type)},
        )
        media_id = result.get("id")
        if not media_id:
            raise TransportError("Media upload returned no id", self.channel)
        return media_id

    async def send_media(
        self, recipient: str, media: MediaPayload, caption: Optional[str] = None,
    ) -> dict[str, Any]:
        self._require_connected()
        if media.is_reference:
            body: dict[str, Any] = {"link": media.url}
        else:
            body = {"id": await self._upload(media)}

        category = media.category
        if caption and category != MediaCategory.AUDIO:
            body["caption"] = caption
        if category == MediaCategory.DOCUMENT and media.filename:
            body["filename"] = media.filename
        return await self._send_message(recipient, category.value, body)
