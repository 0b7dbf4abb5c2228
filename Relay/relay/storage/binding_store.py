"""
Binding store for Relay.

Responsibilities:
- Persist the conversation -> server id binding
- Keep the conversation view and the server view consistent
- Refresh the cached conversation display name on lookup

NOT responsible for:
- Validating server ids (that is the router's job)
- Deleting bindings
"""

import json
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

logger = logging.getLogger("relay.binding_store")

# Redis key namespaces
CLIENT_PREFIX = "relay:client:"
SERVER_PREFIX = "relay:server:"


@dataclass
class Binding:
    """Persisted association between one conversation and one server id."""

    conversation_id: str
    server_id: str
    conversation_name: str = ""
    replace_from: str = ""
    replace_to: str = ""
    bot_service_url: str = ""
    bot_id: str = ""
    bot_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Binding":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


def _client_key(conversation_id: str) -> str:
    return f"{CLIENT_PREFIX}{conversation_id}"


def _server_key(server_id: str) -> str:
    return f"{SERVER_PREFIX}{server_id}"


class RedisBindingStore:
    """
    Redis-backed binding store.

    Key patterns:
    - relay:client:{conversation_id} -> {server_id, conversation_id, conversation_name}
    - relay:server:{server_id}       -> hash {conversation_id: full binding JSON}

    Both views are written in a single MULTI/EXEC pipeline. Last writer wins.
    """

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_settings(
        cls,
        host: str = "127.0.0.1",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None
    ) -> "RedisBindingStore":
        client = redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True,
            socket_connect_timeout=3,
        )
        logger.info(f"✅ Binding store initialized (host={host}, port={port})")
        return cls(client)

    async def get(
        self,
        conversation_id: str,
        conversation_name: Optional[str] = None
    ) -> Optional[Binding]:
        """Look up the binding for a conversation. The name never affects the match."""
        raw = await self.client.get(_client_key(conversation_id))
        if not raw:
            logger.debug(f"[BINDING] No binding for {conversation_id}")
            return None

        client_record = json.loads(raw)
        server_id = client_record["server_id"]

        full = await self.client.hget(_server_key(server_id), conversation_id)
        if full:
            binding = Binding.from_dict(json.loads(full))
        else:
            logger.warning(f"[BINDING] Server view missing for {conversation_id} -> {server_id}")
            binding = Binding(
                conversation_id=conversation_id,
                server_id=server_id,
                conversation_name=client_record.get("conversation_name", ""),
            )

        if conversation_name and conversation_name != client_record.get("conversation_name"):
            client_record["conversation_name"] = conversation_name
            binding.conversation_name = conversation_name
            # Both views carry the name; a missing server view is left for save() to rebuild.
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.set(_client_key(conversation_id), json.dumps(client_record))
                if full:
                    pipe.hset(_server_key(server_id), conversation_id, json.dumps(binding.to_dict()))
                await pipe.execute()
            logger.debug(f"[BINDING] Refreshed display name for {conversation_id}")

        return binding

    async def save(self, binding: Binding) -> None:
        """Upsert the binding, fully replacing any previous values."""
        previous = await self.client.get(_client_key(binding.conversation_id))
        previous_server_id = json.loads(previous)["server_id"] if previous else None

        client_record = {
            "server_id": binding.server_id,
            "conversation_id": binding.conversation_id,
            "conversation_name": binding.conversation_name,
        }

        async with self.client.pipeline(transaction=True) as pipe:
            if previous_server_id and previous_server_id != binding.server_id:
                pipe.hdel(_server_key(previous_server_id), binding.conversation_id)
            pipe.hset(
                _server_key(binding.server_id),
                binding.conversation_id,
                json.dumps(binding.to_dict()),
            )
            pipe.set(_client_key(binding.conversation_id), json.dumps(client_record))
            await pipe.execute()

        logger.info(f"[BINDING] Saved {binding.conversation_id} -> {binding.server_id}")

    async def list_for_server(self, server_id: str) -> List[Binding]:
        """All conversations bound to a server id (reverse lookup for webhooks)."""
        records = await self.client.hgetall(_server_key(server_id))
        return [Binding.from_dict(json.loads(v)) for v in records.values()]

    async def health_check(self) -> Dict[str, Any]:
        """Check Redis connection health."""
        try:
            await self.client.ping()
            return {
                "connected": True,
                "host": self.client.connection_pool.connection_kwargs.get("host"),
                "port": self.client.connection_pool.connection_kwargs.get("port")
            }
        except Exception as e:
            return {
                "connected": False,
                "error": str(e)
            }

    async def close(self):
        await self.client.aclose()
