"""
Shared fixtures for the Relay test suite.

No live Redis, NATS or connector is needed: collaborators are replaced
by the in-memory doubles below.
"""

import dataclasses
from typing import Any, Dict, List, Optional, Tuple

import pytest

from relay.adapters.botframework_adapter import normalize_activity
from relay.config import RelayConfig
from relay.metrics import RelayMetrics
from relay.storage.binding_store import Binding


# ─────────────────────────────────────────────────────────────────────────────
# Collaborator doubles
# ─────────────────────────────────────────────────────────────────────────────

class InMemoryBindingStore:
    """Binding store keyed by conversation id, last writer wins."""

    def __init__(self):
        self.bindings: Dict[str, Binding] = {}
        self.saves: List[Binding] = []
        self.lookups: List[Tuple[str, Optional[str]]] = []

    async def get(self, conversation_id, conversation_name=None):
        self.lookups.append((conversation_id, conversation_name))
        binding = self.bindings.get(conversation_id)
        return dataclasses.replace(binding) if binding else None

    async def save(self, binding):
        self.saves.append(binding)
        self.bindings[binding.conversation_id] = dataclasses.replace(binding)


class RecordingReplyChannel:
    def __init__(self, endpoint, sent):
        self.endpoint = endpoint
        self._sent = sent

    async def send(self, event, text):
        self._sent.append((self.endpoint, event, text))


class RecordingReplyFactory:
    def __init__(self):
        self.sent: List[Tuple[str, Any, str]] = []

    def for_endpoint(self, url):
        return RecordingReplyChannel(url, self.sent)


class RecordingEventRecorder:
    def __init__(self):
        self.events: List[Tuple[str, Dict[str, str]]] = []

    async def record(self, event_name, attributes):
        self.events.append((event_name, dict(attributes)))
        return True


class SequenceIdGenerator:
    """Deterministic tokens: token-1, token-2, ..."""

    def __init__(self):
        self.count = 0

    def fresh(self):
        self.count += 1
        return f"token-{self.count}"


class FakePipeline:
    """Buffers commands like redis.asyncio's Pipeline and applies them on execute()."""

    def __init__(self, redis):
        self._redis = redis
        self._ops = []
        self.executed = False

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self._ops = []
        return False

    def set(self, *args):
        self._ops.append(("set", args))
        return self

    def hset(self, *args):
        self._ops.append(("hset", args))
        return self

    def hdel(self, *args):
        self._ops.append(("hdel", args))
        return self

    async def execute(self):
        results = []
        for name, args in self._ops:
            results.append(await getattr(self._redis, name)(*args))
        self._ops = []
        self.executed = True
        return results


class _FakePool:
    connection_kwargs = {"host": "fake-redis", "port": 6390}


class FakeRedis:
    """The subset of redis.asyncio.Redis used by the binding store."""

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.pipelines: List[FakePipeline] = []
        self.connection_pool = _FakePool()
        self.closed = False

    async def get(self, key):
        return self.strings.get(key)

    async def set(self, key, value):
        self.strings[key] = value
        return True

    async def hget(self, key, field):
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key, field, value):
        self.hashes.setdefault(key, {})[field] = value
        return 1

    async def hdel(self, key, field):
        removed = self.hashes.get(key, {}).pop(field, None)
        return 1 if removed is not None else 0

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def ping(self):
        return True

    async def aclose(self):
        self.closed = True

    def pipeline(self, transaction=True):
        pipe = FakePipeline(self)
        self.pipelines.append(pipe)
        return pipe


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def relay_config():
    cfg = RelayConfig()
    cfg.SERVER_ID_PREFIX = "tfs-"
    cfg.BASE_URL = "https://x"
    return cfg


@pytest.fixture
def store():
    return InMemoryBindingStore()


@pytest.fixture
def reply_factory():
    return RecordingReplyFactory()


@pytest.fixture
def recorder():
    return RecordingEventRecorder()


@pytest.fixture
def id_generator():
    return SequenceIdGenerator()


@pytest.fixture
def metrics():
    return RelayMetrics()


@pytest.fixture
def fake_redis():
    return FakeRedis()


def make_activity(
    activity_type: str = "message",
    text: str = "",
    conversation_id: str = "c1",
    conversation_name: str = "Team Chat",
    **overrides
) -> Dict[str, Any]:
    """A connector activity as it arrives on /api/messages."""
    activity = {
        "type": activity_type,
        "id": "act-1",
        "text": text,
        "serviceUrl": "https://smba.example.com/emea/",
        "channelId": "msteams",
        "from": {"id": "user-1", "name": "Alice"},
        "recipient": {"id": "bot-1", "name": "TfsBot"},
        "conversation": {"id": conversation_id, "name": conversation_name},
    }
    activity.update(overrides)
    return activity


def make_message(text: str, **kwargs):
    return normalize_activity(make_activity("message", text, **kwargs))
