"""
Reply channel - sends reply text back into a conversation through the
bot connector REST API.

Delivery failures are raised, never retried.
"""

import logging
import time
from typing import Optional
from urllib.parse import quote

import httpx

from relay.activity_schema import InboundEvent
from relay.adapters.botframework_adapter import create_reply_payload

logger = logging.getLogger("relay.reply_channel")

TOKEN_URL = "https://login.microsoftonline.com/botframework.com/oauth2/v2.0/token"
TOKEN_SCOPE = "https://api.botframework.com/.default"
TOKEN_REFRESH_MARGIN_SECONDS = 300


class RelayError(Exception):
    """Base error for Relay collaborators."""


class ReplyDeliveryError(RelayError):
    """The connector rejected or could not receive a reply."""

    def __init__(self, endpoint: str, status_code: Optional[int], message: str):
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(f"Reply to {endpoint} failed ({status_code}): {message}")


class BotCredentialsTokenProvider:
    """
    Client-credentials bearer token for outbound connector calls.

    Without an app id the provider is anonymous (emulator / local testing).
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        app_id: str = "",
        app_password: str = "",
        token_url: str = TOKEN_URL
    ):
        self.http_client = http_client
        self.app_id = app_id
        self.app_password = app_password
        self.token_url = token_url
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    @property
    def is_anonymous(self) -> bool:
        return not self.app_id

    async def get_token(self) -> Optional[str]:
        if self.is_anonymous:
            return None
        if self._token and time.time() < self._expires_at - TOKEN_REFRESH_MARGIN_SECONDS:
            return self._token

        try:
            resp = await self.http_client.post(
                self.token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": self.app_id,
                    "client_secret": self.app_password,
                    "scope": TOKEN_SCOPE,
                },
            )
        except httpx.HTTPError as e:
            raise ReplyDeliveryError(self.token_url, None, f"token request failed: {e}") from e

        if resp.status_code >= 400:
            raise ReplyDeliveryError(self.token_url, resp.status_code, resp.text[:200])

        try:
            body = resp.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise ReplyDeliveryError(self.token_url, resp.status_code, f"malformed token response: {e}") from e

        self._token = token
        self._expires_at = time.time() + expires_in
        logger.info("✅ Connector token acquired")
        return self._token


class ConnectorReplyChannel:
    """Reply channel bound to one connector service URL."""

    def __init__(
        self,
        service_url: str,
        http_client: httpx.AsyncClient,
        token_provider: Optional[BotCredentialsTokenProvider] = None
    ):
        self.service_url = service_url.rstrip("/")
        self.http_client = http_client
        self.token_provider = token_provider

    def _activities_url(self, event: InboundEvent) -> str:
        conversation = quote(event.conversation.id or "", safe="")
        url = f"{self.service_url}/v3/conversations/{conversation}/activities"
        if event.activity_id:
            url = f"{url}/{quote(event.activity_id, safe='')}"
        return url

    async def send(self, event: InboundEvent, text: str) -> None:
        """Send ``text`` as a reply to ``event``."""
        url = self._activities_url(event)
        headers = {}
        if self.token_provider:
            token = await self.token_provider.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            resp = await self.http_client.post(
                url, json=create_reply_payload(event, text), headers=headers
            )
        except httpx.HTTPError as e:
            raise ReplyDeliveryError(url, None, str(e)) from e

        if resp.status_code >= 400:
            raise ReplyDeliveryError(url, resp.status_code, resp.text[:200])

        logger.debug(f"[REPLY] Sent {len(text)} chars to {url}")


class ConnectorReplyChannelFactory:
    """Builds a reply channel for an activity's service URL."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_provider: Optional[BotCredentialsTokenProvider] = None
    ):
        self.http_client = http_client
        self.token_provider = token_provider

    def for_endpoint(self, url: str) -> ConnectorReplyChannel:
        return ConnectorReplyChannel(url, self.http_client, self.token_provider)
