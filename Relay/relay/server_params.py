"""
Server id parameters - generation and parsing of server ids.

A server id is opaque: apart from the length rule below it is never
validated or interpreted.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Protocol

# Ids of exactly this length are rejected by ``setserver:``.
# TODO: confirm with webhook owners which id format this length was meant to block.
RESERVED_SERVER_ID_LENGTH = 20


class IdGenerator(Protocol):
    def fresh(self) -> str: ...


class UuidGenerator:
    """Globally unique tokens from uuid4."""

    def fresh(self) -> str:
        return uuid.uuid4().hex


@dataclass
class ServerIdParams:
    """A server id plus the optional text substitution pair bound with it."""

    id: str
    replace_from: str = ""
    replace_to: str = ""

    @classmethod
    def new(cls, prefix: str, id_generator: Optional[IdGenerator] = None) -> "ServerIdParams":
        generator = id_generator or UuidGenerator()
        return cls(id=f"{prefix}{generator.fresh()}")

    @classmethod
    def parse(
        cls,
        raw: str,
        prefix: str,
        id_generator: Optional[IdGenerator] = None
    ) -> "ServerIdParams":
        """
        Parse the text that followed ``setserver:``.

        Empty text yields a freshly generated id, exactly like ``setup``.
        Anything else is taken verbatim (surrounding whitespace removed).
        """
        server_id = (raw or "").strip()
        if not server_id:
            return cls.new(prefix, id_generator)
        return cls(id=server_id)


def is_valid_server_id(server_id: str) -> bool:
    return len(server_id) != RESERVED_SERVER_ID_LENGTH
