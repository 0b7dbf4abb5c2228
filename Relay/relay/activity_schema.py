"""
Inbound Activity Schema - Pure Data Structures

Typed view of one inbound chat-platform activity (a user message or a
system event). NO REASONING. Just data.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
from enum import Enum


class ActivityType(str, Enum):
    """Known activity kinds (deterministic classification only)."""
    MESSAGE = "message"
    CONVERSATION_UPDATE = "conversationUpdate"
    CONTACT_RELATION_UPDATE = "contactRelationUpdate"
    TYPING = "typing"
    PING = "ping"
    DELETE_USER_DATA = "deleteUserData"
    OTHER = "other"

    @classmethod
    def from_raw(cls, value: Optional[str]) -> "ActivityType":
        for member in cls:
            if member.value == value:
                return member
        return cls.OTHER


@dataclass
class ChannelAccount:
    """A participant in a conversation (user or bot)."""

    id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ConversationAccount:
    """The conversation (chat thread) an activity belongs to."""

    id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class Mention:
    """A mention entity attached to a message."""

    mentioned: ChannelAccount
    text: Optional[str] = None


@dataclass
class InboundEvent:
    """One inbound activity, normalized."""

    activity_type: ActivityType
    activity_id: Optional[str] = None
    text: str = ""
    conversation: ConversationAccount = field(default_factory=ConversationAccount)
    from_account: ChannelAccount = field(default_factory=ChannelAccount)
    recipient: ChannelAccount = field(default_factory=ChannelAccount)
    service_url: Optional[str] = None
    channel_id: Optional[str] = None
    members_added: List[ChannelAccount] = field(default_factory=list)
    mentions: List[Mention] = field(default_factory=list)

    @property
    def is_message(self) -> bool:
        return self.activity_type == ActivityType.MESSAGE

    @property
    def conversation_id(self) -> Optional[str]:
        return self.conversation.id

    @property
    def conversation_name(self) -> Optional[str]:
        return self.conversation.name

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging, excluding None values."""
        data = asdict(self)
        data["activity_type"] = self.activity_type.value
        return {k: v for k, v in data.items() if v is not None}
