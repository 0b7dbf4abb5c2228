"""
Telemetry recorders for Relay.

Publishes usage events to NATS JetStream for downstream consumers.
Pure fire-and-forget pattern - Relay never waits on, or fails because of,
telemetry.
"""

import json
import logging
from datetime import datetime
from typing import Dict, Optional

import nats
from nats.js import JetStreamContext
from nats.js.api import StreamConfig, RetentionPolicy

logger = logging.getLogger("relay.telemetry")

TELEMETRY_SUBJECT_PREFIX = "telemetry.relay"


def _event_payload(event_name: str, attributes: Dict[str, str]) -> Dict[str, object]:
    return {
        "event": event_name,
        "attributes": dict(attributes or {}),
        "recorded_at": datetime.utcnow().isoformat(),
    }


class LoggingEventRecorder:
    """Writes telemetry events to the log. Used when NATS is unavailable."""

    async def record(self, event_name: str, attributes: Dict[str, str]) -> bool:
        try:
            logger.info(f"[TELEMETRY] {event_name} {json.dumps(attributes or {})}")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Telemetry log failed (non-fatal): {e}")
            return False


class NATSEventRecorder:
    """
    Publishes telemetry events to NATS JetStream.

    Philosophy:
    - Fire and forget
    - Failed publishes are logged, never raised
    """

    def __init__(
        self,
        nats_url: str = "nats://localhost:4222",
        stream_name: str = "BASALMIND_TELEMETRY"
    ):
        self.nats_url = nats_url
        self.stream_name = stream_name

        self.nc: Optional[nats.NATS] = None
        self.js: Optional[JetStreamContext] = None
        self._connected = False

    async def connect(self) -> bool:
        """Connect and ensure the telemetry stream exists. Non-fatal."""
        try:
            self.nc = await nats.connect(
                self.nats_url,
                name="relay-telemetry",
                max_reconnect_attempts=3,
                reconnect_time_wait=1,
            )
            self.js = self.nc.jetstream()

            try:
                await self.js.stream_info(self.stream_name)
                logger.info(f"✅ NATS stream '{self.stream_name}' exists")
            except Exception:
                stream_config = StreamConfig(
                    name=self.stream_name,
                    subjects=[f"{TELEMETRY_SUBJECT_PREFIX}.>"],
                    retention=RetentionPolicy.LIMITS,
                    max_age=86400 * 7,  # 7 days
                    max_bytes=256 * 1024 * 1024,  # 256MB
                )
                await self.js.add_stream(stream_config)
                logger.info(f"✅ Created NATS stream '{self.stream_name}'")

            self._connected = True
            logger.info(f"✅ Telemetry recorder connected: {self.nats_url}")
            return True

        except Exception as e:
            logger.warning(f"⚠️ Telemetry recorder connection failed (non-fatal): {e}")
            self._connected = False
            return False

    async def record(self, event_name: str, attributes: Dict[str, str]) -> bool:
        """
        Publish one telemetry event.

        Subject pattern: telemetry.relay.{event_name}
        Example: telemetry.relay.Messages.Post

        Returns:
            bool: True if published, False otherwise (never raises)
        """
        if not self._connected or not self.js:
            return False

        try:
            subject = f"{TELEMETRY_SUBJECT_PREFIX}.{event_name}"
            payload = json.dumps(_event_payload(event_name, attributes)).encode("utf-8")
            await self.js.publish(subject, payload)
            logger.debug(f"📤 Telemetry published: {subject} ({len(payload)} bytes)")
            return True
        except Exception as e:
            logger.warning(f"⚠️ Telemetry publish failed (non-fatal): {e}")
            return False

    async def disconnect(self):
        """Graceful shutdown."""
        if self.nc:
            try:
                await self.nc.drain()
            except Exception as e:
                logger.error(f"❌ Error disconnecting telemetry recorder: {e}")
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected
