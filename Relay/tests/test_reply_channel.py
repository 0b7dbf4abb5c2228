"""
Reply Channel and Telemetry Test Suite

HTTP is served by httpx.MockTransport; NATS is mocked.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from relay.adapters.botframework_adapter import normalize_activity
from relay.reply_channel import (
    BotCredentialsTokenProvider,
    ConnectorReplyChannelFactory,
    ReplyDeliveryError,
)
from relay.telemetry import LoggingEventRecorder, NATSEventRecorder

from conftest import make_activity


def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ─────────────────────────────────────────────────────────────────────────────
# Connector reply channel
# ─────────────────────────────────────────────────────────────────────────────

class TestConnectorReplyChannel:

    @pytest.mark.asyncio
    async def test_posts_reply_to_conversation(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "reply-1"})

        async with _client(handler) as client:
            channel = ConnectorReplyChannelFactory(client).for_endpoint(
                "https://smba.example.com/emea/"
            )
            await channel.send(normalize_activity(make_activity(text="help")), "hello")

        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "https://smba.example.com/emea/v3/conversations/c1/activities/act-1"
        body = json.loads(request.content)
        assert body["text"] == "hello"
        assert body["replyToId"] == "act-1"
        assert "authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_conversation_id_is_escaped(self):
        urls = []

        def handler(request):
            urls.append(request.url.raw_path.decode())
            return httpx.Response(201)

        event = normalize_activity(make_activity(conversation_id="19:abc@thread.v2", id=None))
        async with _client(handler) as client:
            await ConnectorReplyChannelFactory(client).for_endpoint(
                "https://smba.example.com"
            ).send(event, "x")

        assert urls == ["/v3/conversations/19%3Aabc%40thread.v2/activities"]

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        async with _client(lambda r: httpx.Response(403, text="forbidden")) as client:
            channel = ConnectorReplyChannelFactory(client).for_endpoint("https://smba.example.com")
            with pytest.raises(ReplyDeliveryError) as exc:
                await channel.send(normalize_activity(make_activity()), "x")

        assert exc.value.status_code == 403

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        async with _client(handler) as client:
            channel = ConnectorReplyChannelFactory(client).for_endpoint("https://smba.example.com")
            with pytest.raises(ReplyDeliveryError) as exc:
                await channel.send(normalize_activity(make_activity()), "x")

        assert exc.value.status_code is None


class TestTokenProvider:

    @pytest.mark.asyncio
    async def test_anonymous_without_app_id(self):
        async with _client(lambda r: httpx.Response(500)) as client:
            provider = BotCredentialsTokenProvider(client)
            assert provider.is_anonymous
            assert await provider.get_token() is None

    @pytest.mark.asyncio
    async def test_token_fetched_once_and_sent(self):
        calls = {"token": 0}
        auth_headers = []

        def handler(request):
            if "oauth2" in str(request.url):
                calls["token"] += 1
                return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
            auth_headers.append(request.headers.get("authorization"))
            return httpx.Response(200)

        async with _client(handler) as client:
            provider = BotCredentialsTokenProvider(client, app_id="app", app_password="pw")
            channel = ConnectorReplyChannelFactory(client, provider).for_endpoint(
                "https://smba.example.com"
            )
            event = normalize_activity(make_activity())
            await channel.send(event, "one")
            await channel.send(event, "two")

        assert calls["token"] == 1
        assert auth_headers == ["Bearer tok", "Bearer tok"]

    @pytest.mark.asyncio
    async def test_rejected_credentials_raise_delivery_error(self):
        sent = []

        def handler(request):
            if "oauth2" in str(request.url):
                return httpx.Response(401, text="invalid_client")
            sent.append(request)
            return httpx.Response(200)

        async with _client(handler) as client:
            provider = BotCredentialsTokenProvider(client, app_id="app", app_password="bad")
            channel = ConnectorReplyChannelFactory(client, provider).for_endpoint(
                "https://smba.example.com"
            )
            with pytest.raises(ReplyDeliveryError) as exc:
                await channel.send(normalize_activity(make_activity()), "x")

        assert exc.value.status_code == 401
        assert exc.value.endpoint == provider.token_url
        assert sent == []

    @pytest.mark.asyncio
    async def test_token_endpoint_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        async with _client(handler) as client:
            provider = BotCredentialsTokenProvider(client, app_id="app", app_password="pw")
            with pytest.raises(ReplyDeliveryError) as exc:
                await provider.get_token()

        assert exc.value.status_code is None
        assert isinstance(exc.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_token_response_without_access_token(self):
        async with _client(lambda r: httpx.Response(200, json={"error": "?"})) as client:
            provider = BotCredentialsTokenProvider(client, app_id="app", app_password="pw")
            with pytest.raises(ReplyDeliveryError):
                await provider.get_token()


# ─────────────────────────────────────────────────────────────────────────────
# Telemetry recorders
# ─────────────────────────────────────────────────────────────────────────────

class TestNATSEventRecorder:

    @pytest.mark.asyncio
    async def test_record_without_connection_is_noop(self):
        recorder = NATSEventRecorder()
        assert await recorder.record("Messages.Post", {"message": "hi"}) is False

    @pytest.mark.asyncio
    async def test_connect_failure_is_non_fatal(self):
        with patch("relay.telemetry.nats.connect", AsyncMock(side_effect=OSError("no nats"))):
            recorder = NATSEventRecorder()
            assert await recorder.connect() is False
            assert not recorder.is_connected

    @pytest.mark.asyncio
    async def test_record_publishes_to_subject(self):
        js = MagicMock()
        js.stream_info = AsyncMock()
        js.publish = AsyncMock()
        nc = MagicMock()
        nc.jetstream.return_value = js

        with patch("relay.telemetry.nats.connect", AsyncMock(return_value=nc)):
            recorder = NATSEventRecorder()
            assert await recorder.connect() is True
            assert await recorder.record("Messages.Post", {"message": "hi"}) is True

        subject, payload = js.publish.call_args.args
        assert subject == "telemetry.relay.Messages.Post"
        data = json.loads(payload)
        assert data["event"] == "Messages.Post"
        assert data["attributes"] == {"message": "hi"}

    @pytest.mark.asyncio
    async def test_publish_failure_swallowed(self):
        recorder = NATSEventRecorder()
        recorder._connected = True
        recorder.js = MagicMock()
        recorder.js.publish = AsyncMock(side_effect=TimeoutError("slow"))

        assert await recorder.record("Messages.Post", {}) is False


class TestLoggingEventRecorder:

    @pytest.mark.asyncio
    async def test_logs_event(self, caplog):
        with caplog.at_level("INFO", logger="relay.telemetry"):
            assert await LoggingEventRecorder().record("Messages.Post", {"message": "hi"})
        assert "Messages.Post" in caplog.text
