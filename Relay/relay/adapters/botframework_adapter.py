"""
Bot Framework Adapter - Normalize connector activities to InboundEvent.

PURE FUNCTIONS ONLY:
- No side effects
- No I/O
- Just structural transformation (simple key lookups)
"""

import re
from typing import Any, Dict, List

from relay.activity_schema import (
    ActivityType,
    ChannelAccount,
    ConversationAccount,
    InboundEvent,
    Mention,
)


def _account(raw: Any) -> ChannelAccount:
    raw = raw or {}
    return ChannelAccount(id=raw.get("id"), name=raw.get("name"))


def _mentions(entities: List[Dict[str, Any]]) -> List[Mention]:
    mentions = []
    for entity in entities or []:
        if entity.get("type") != "mention":
            continue
        mentions.append(Mention(
            mentioned=_account(entity.get("mentioned")),
            text=entity.get("text"),
        ))
    return mentions


def normalize_activity(activity: Dict[str, Any]) -> InboundEvent:
    """
    Normalize a connector activity to an InboundEvent.

    PURE FUNCTION:
    - Input: raw activity JSON
    - Output: InboundEvent
    """
    conversation = activity.get("conversation") or {}

    return InboundEvent(
        activity_type=ActivityType.from_raw(activity.get("type")),
        activity_id=activity.get("id"),
        text=activity.get("text") or "",
        conversation=ConversationAccount(
            id=conversation.get("id"),
            name=conversation.get("name"),
        ),
        from_account=_account(activity.get("from")),
        recipient=_account(activity.get("recipient")),
        service_url=activity.get("serviceUrl"),
        channel_id=activity.get("channelId"),
        members_added=[_account(m) for m in activity.get("membersAdded") or []],
        mentions=_mentions(activity.get("entities")),
    )


def strip_recipient_mention(event: InboundEvent) -> str:
    """
    Remove mentions of the receiving bot from the message text and trim it.

    Handles both the mention entity text (``<at>TfsBot</at>``) and a plain
    leading ``@TfsBot`` token.
    """
    text = event.text or ""
    recipient = event.recipient

    for mention in event.mentions:
        if mention.mentioned.id == recipient.id and mention.text:
            text = text.replace(mention.text, "")

    if recipient.name:
        text = re.sub(
            rf"^\s*@{re.escape(recipient.name)}(?!\w)",
            "",
            text,
            flags=re.IGNORECASE,
        )

    return text.strip()


def create_reply_payload(event: InboundEvent, text: str) -> Dict[str, Any]:
    """
    Build the reply activity for an inbound event.

    The reply goes back into the same conversation, with sender and
    recipient swapped.
    """
    payload: Dict[str, Any] = {
        "type": ActivityType.MESSAGE.value,
        "text": text,
        "from": {"id": event.recipient.id, "name": event.recipient.name},
        "recipient": {"id": event.from_account.id, "name": event.from_account.name},
        "conversation": {"id": event.conversation.id, "name": event.conversation.name},
        "serviceUrl": event.service_url,
        "channelId": event.channel_id,
    }
    if event.activity_id:
        payload["replyToId"] = event.activity_id
    return payload
