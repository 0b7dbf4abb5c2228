"""
Relay Configuration - Environment-driven configuration management.
"""

import os
from dotenv import load_dotenv

load_dotenv()


class RelayConfig:
    """Central configuration for the Relay service."""

    # Service identity
    SERVICE_NAME = "Relay"
    VERSION = "1.0.0"

    def __init__(self):
        self.HOST = os.getenv("RELAY_HOST", "0.0.0.0")
        self.PORT = int(os.getenv("RELAY_PORT", 5020))

        # Server id binding
        self.SERVER_ID_PREFIX = os.getenv("SERVER_ID_PREFIX", "tfs-")
        self.BASE_URL = os.getenv("BASE_URL", "http://localhost:5020").rstrip("/")

        # Redis (binding store)
        self.REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
        self.REDIS_PORT = int(os.getenv("REDIS_PORT", 6390))
        self.REDIS_PASSWORD = os.getenv("REDIS_PASSWORD")
        self.REDIS_DB = int(os.getenv("REDIS_DB", 0))

        # NATS (telemetry)
        self.NATS_URL = os.getenv("NATS_URL", "nats://localhost:4222")
        self.TELEMETRY_STREAM = os.getenv("TELEMETRY_STREAM", "BASALMIND_TELEMETRY")

        # Bot connector credentials (empty = anonymous/emulator)
        self.MICROSOFT_APP_ID = os.getenv("MICROSOFT_APP_ID", "")
        self.MICROSOFT_APP_PASSWORD = os.getenv("MICROSOFT_APP_PASSWORD", "")
        self.REPLY_TIMEOUT_SECONDS = float(os.getenv("REPLY_TIMEOUT_SECONDS", 15.0))

        # Processing
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @property
    def server_id_prefix(self) -> str:
        return self.SERVER_ID_PREFIX

    @property
    def base_url(self) -> str:
        return self.BASE_URL


config = RelayConfig()
