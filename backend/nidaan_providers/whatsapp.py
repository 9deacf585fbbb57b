from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from nidaan_core.errors import AudioSendFailure, AudioUploadFailure, DeliveryError, MediaDownloadFailure

from .http_utils import provider_error_message, timeout

logger = logging.getLogger(__name__)

GRAPH_API_BASE = os.getenv("WHATSAPP_API_BASE", "https://graph.facebook.com/v18.0").rstrip("/")


class WhatsAppGateway:
    """Outbound side of the WhatsApp Cloud API: messages, media upload and download."""

    def __init__(
        self,
        *,
        access_token: str | None = None,
        phone_number_id: str | None = None,
        base_url: str = GRAPH_API_BASE,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.access_token = (
            access_token if access_token is not None else os.getenv("WHATSAPP_ACCESS_TOKEN") or ""
        ).strip()
        self.phone_number_id = (
            phone_number_id if phone_number_id is not None else os.getenv("WHATSAPP_PHONE_NUMBER_ID") or ""
        ).strip()
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds or float(os.getenv("NIDAAN_HTTP_TIMEOUT_SECONDS", "20"))
        self._transport = transport

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=timeout(self.timeout_seconds), transport=self._transport)

    def _require_config(self, failure: type[DeliveryError]) -> None:
        if not self.access_token or not self.phone_number_id:
            raise failure("WhatsApp credentials are not configured.")

    def media_url(self, media_id: str) -> str:
        return f"{self.base_url}/{media_id}"

    def _post_message(self, payload: dict[str, Any], failure: type[DeliveryError]) -> str | None:
        self._require_config(failure)
        body = {"messaging_product": "whatsapp", **payload}
        try:
            with self._client() as client:
                response = client.post(
                    f"{self.base_url}/{self.phone_number_id}/messages",
                    headers={**self._auth_headers(), "Content-Type": "application/json"},
                    json=body,
                )
        except httpx.HTTPError as exc:
            raise failure(f"WhatsApp send failed: {exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            raise failure(f"WhatsApp send failed ({response.status_code}): {provider_error_message(response)}")
        try:
            receipt = response.json()
        except ValueError:
            receipt = {}
        messages = (receipt.get("messages") if isinstance(receipt, dict) else None) or [{}]
        message_id = messages[0].get("id") if isinstance(messages[0], dict) else None
        logger.info("whatsapp %s sent: message_id=%s", payload.get("type"), message_id)
        return message_id

    def send_text(self, to: str, body: str) -> str | None:
        logger.info("whatsapp sending text: length=%d", len(body))
        return self._post_message({"to": to, "type": "text", "text": {"body": body}}, DeliveryError)

    def send_audio(self, to: str, *, media_id: str | None = None, link: str | None = None) -> str | None:
        if not media_id and not link:
            raise AudioSendFailure("Audio message needs a media id or a link.")
        audio: dict[str, str] = {"id": media_id} if media_id else {"link": str(link)}
        return self._post_message({"to": to, "type": "audio", "audio": audio}, AudioSendFailure)

    def upload_media(self, data: bytes, mime_type: str, file_name: str) -> str:
        self._require_config(AudioUploadFailure)
        logger.info("whatsapp uploading media: mime=%s size=%d", mime_type, len(data))
        try:
            with self._client() as client:
                response = client.post(
                    f"{self.base_url}/{self.phone_number_id}/media",
                    headers=self._auth_headers(),
                    data={"messaging_product": "whatsapp", "type": mime_type},
                    files={"file": (file_name, data, mime_type)},
                )
        except httpx.HTTPError as exc:
            raise AudioUploadFailure(f"WhatsApp media upload failed: {exc.__class__.__name__}") from exc
        if response.status_code >= 400:
            raise AudioUploadFailure(
                f"WhatsApp media upload failed ({response.status_code}): {provider_error_message(response)}"
            )
        try:
            media_id = response.json().get("id")
        except (ValueError, AttributeError):
            media_id = None
        if not media_id:
            raise AudioUploadFailure("WhatsApp media upload returned no media id.")
        return str(media_id)

    def owns_media_url(self, url: str) -> bool:
        """True when `url` points at this gateway's Graph API host over https."""
        try:
            candidate = httpx.URL(url)
        except (httpx.InvalidURL, TypeError):
            return False
        expected = httpx.URL(self.base_url)
        return candidate.scheme == "https" and bool(candidate.host) and candidate.host == expected.host

    def fetch_media(self, url: str) -> tuple[bytes, str | None]:
        """Resolve a Graph media URL to its CDN location and download the bytes."""
        if not self.access_token:
            raise MediaDownloadFailure("WhatsApp credentials are not configured.")
        try:
            with self._client() as client:
                meta = client.get(url, headers=self._auth_headers())
                if meta.status_code >= 400:
                    raise MediaDownloadFailure(
                        f"WhatsApp media metadata failed ({meta.status_code}): {provider_error_message(meta)}"
                    )
                try:
                    meta_json = meta.json()
                except ValueError:
                    meta_json = {}
                cdn_url = meta_json.get("url") if isinstance(meta_json, dict) else None
                if not cdn_url:
                    raise MediaDownloadFailure("WhatsApp media metadata has no download url.")
                content = client.get(cdn_url, headers=self._auth_headers())
        except httpx.HTTPError as exc:
            raise MediaDownloadFailure(f"WhatsApp media download failed: {exc.__class__.__name__}") from exc
        if content.status_code >= 400:
            raise MediaDownloadFailure(f"WhatsApp media download failed ({content.status_code}).")
        mime_type = meta_json.get("mime_type") or content.headers.get("content-type")
        logger.info("whatsapp media downloaded: size=%d mime=%s", len(content.content), mime_type)
        return content.content, mime_type

    def download_media(self, media_id: str) -> tuple[bytes, str | None]:
        return self.fetch_media(self.media_url(media_id))
