"""
Relay Command Router - Core decision engine.

Philosophy: Bind, don't guess. Reply, don't converse.

Per inbound activity:
  1. System events go through the system-event table (no command parsing)
  2. Messages are recorded for telemetry (never allowed to fail the request)
  3. The bot mention is stripped and the text trimmed
  4. The lower-cased text is matched against the ordered command table,
     first match wins
  5. Nothing matched: the original text is echoed back

Store and reply-channel failures are not handled here; they propagate to
the HTTP boundary.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set

from relay.activity_schema import ActivityType, InboundEvent
from relay.adapters.botframework_adapter import strip_recipient_mention
from relay.config import RelayConfig
from relay.logging_config import ActivityLogger
from relay.metrics import RelayMetrics
from relay.reply_channel import ReplyDeliveryError
from relay.server_params import IdGenerator, ServerIdParams, UuidGenerator, is_valid_server_id
from relay.storage.binding_store import Binding

logger = logging.getLogger("relay.router")

# Commands
CHAT_INFO_CMD = "chat.info"
SETUP_CMD = "setup"
SET_SERVER_CMD = "setserver:"
GET_SERVER_CMD = "getserver"
HELP_CMD = "help"
HELP_SYNONYM = "Settings"  # compared against the original text, case-sensitive
GET_USERS_CMD = "getusers"
VERSION_PROBE = "version"

# Replies
WELCOME_MESSAGE = "Hi I am TFS bot, you can find out more by writing **help**"
HELP_MESSAGE = (
    "You can setup your server id by writing **setup** "
    "or getting the server id by writing **getserver**"
)
INVALID_SERVER_ID_MESSAGE = "This is not valid server id."
SETUP_REQUIRED_MESSAGE = "You need to run **setup** first."
VERSION_PROBE_REPLY = "1.2"

TELEMETRY_MESSAGE_EVENT = "Messages.Post"
BOT_MEMBER_NAME = "bot"


def server_id_info(server_id: Optional[str], base_url: str) -> str:
    """Describe a bound server id and the two webhook URLs derived from it."""
    if server_id is None:
        return SETUP_REQUIRED_MESSAGE

    pr_url = f"{base_url}/api/webhooks/pullrequest/{server_id}"
    build_url = f"{base_url}/api/webhooks/build/{server_id}"

    return (
        f"Your server id was set to **{server_id}**  \n"
        f"_Setup your TFS webhooks to following urls:_  \n"
        f"pull requests:\t[{pr_url}]({pr_url})  \n"
        f"build:\t\t[{build_url}]({build_url})  \n"
    )


@dataclass
class CommandContext:
    """One message being routed."""

    event: InboundEvent
    text: str      # mention stripped, trimmed, original casing
    lowered: str   # comparison copy
    log: ActivityLogger


CommandHandler = Callable[[CommandContext], Awaitable[str]]


@dataclass
class Command:
    """An entry of the command table: a predicate and its handler."""

    name: str
    matches: Callable[[CommandContext], bool]
    handler: CommandHandler


class CommandRouter:
    """
    Relay's command interpreter.

    Collaborators are injected so tests can substitute each of them:
      store          - get(conversation_id, name) / save(binding)
      reply_factory  - for_endpoint(url) -> channel with send(event, text)
      recorder       - record(event_name, attributes), fire-and-forget
      id_generator   - fresh() -> globally unique token
    """

    def __init__(
        self,
        store,
        config: RelayConfig,
        reply_factory=None,
        recorder=None,
        id_generator: Optional[IdGenerator] = None,
        metrics: Optional[RelayMetrics] = None,
    ):
        self._store = store
        self._config = config
        self._reply_factory = reply_factory
        self._recorder = recorder
        self._id_generator = id_generator or UuidGenerator()
        self._metrics = metrics
        # Strong references so scheduled records are not garbage collected mid-flight.
        self._telemetry_tasks: Set[asyncio.Task] = set()

        # Priority order matters: first match wins.
        self.commands: List[Command] = [
            Command(CHAT_INFO_CMD, lambda c: c.lowered == CHAT_INFO_CMD, self._chat_info),
            Command(SETUP_CMD, lambda c: c.lowered == SETUP_CMD, self._setup),
            Command("setserver", lambda c: c.lowered.startswith(SET_SERVER_CMD), self._set_server),
            Command(GET_SERVER_CMD, lambda c: c.lowered == GET_SERVER_CMD, self._get_server),
            Command(HELP_CMD, lambda c: c.lowered == HELP_CMD or c.text == HELP_SYNONYM, self._help),
            Command(GET_USERS_CMD, lambda c: c.lowered == GET_USERS_CMD, self._get_users),
            Command(VERSION_PROBE, lambda c: VERSION_PROBE in c.lowered, self._version),
        ]

        self.system_handlers = {
            ActivityType.CONVERSATION_UPDATE: self._on_members_added,
            ActivityType.CONTACT_RELATION_UPDATE: self._on_contact_relation_update,
            # Considered and intentionally ignored:
            ActivityType.TYPING: self._ignore,
            ActivityType.PING: self._ignore,
            ActivityType.DELETE_USER_DATA: self._ignore,
        }

    # ── Entry points ──────────────────────────────────────────────────────────

    async def handle(self, event: InboundEvent) -> Optional[str]:
        """Route the event and send the reply, if any. Returns the reply text."""
        reply = await self.route(event)
        if reply is None:
            return None

        if not event.service_url:
            raise ReplyDeliveryError("", None, "activity has no serviceUrl")
        if self._reply_factory is None:
            raise ReplyDeliveryError(event.service_url, None, "no reply channel configured")

        channel = self._reply_factory.for_endpoint(event.service_url)
        await channel.send(event, reply)
        if self._metrics:
            self._metrics.record_reply_sent()
        return reply

    async def route(self, event: InboundEvent) -> Optional[str]:
        """Decide the reply for one event and apply its binding mutations."""
        log = ActivityLogger(event.activity_id, event.conversation_id, "router")
        if self._metrics:
            self._metrics.record_event_received(event.is_message)

        if not event.is_message:
            return await self._handle_system_event(event, log)

        text = strip_recipient_mention(event)
        self._track_message(text, log)

        ctx = CommandContext(event=event, text=text, lowered=text.lower(), log=log)
        for command in self.commands:
            if command.matches(ctx):
                log.info(f"Command '{command.name}'", stage="COMMAND")
                if self._metrics:
                    self._metrics.record_command(command.name)
                return await command.handler(ctx)

        log.debug("No command matched, echoing", stage="ECHO")
        return text or None

    # ── Telemetry ─────────────────────────────────────────────────────────────

    def _track_message(self, text: str, log: ActivityLogger):
        """Schedule the Messages.Post record; routing never waits on it."""
        if self._recorder is None:
            return
        task = asyncio.create_task(
            self._recorder.record(TELEMETRY_MESSAGE_EVENT, {"message": text})
        )
        self._telemetry_tasks.add(task)

        def _done(t: asyncio.Task):
            self._telemetry_tasks.discard(t)
            if t.cancelled():
                return
            if t.exception() is not None:
                log.warning(f"⚠️ Telemetry record failed (non-fatal): {t.exception()}", stage="TELEMETRY")

        task.add_done_callback(_done)

    async def drain_telemetry(self):
        """Wait for telemetry records still in flight (shutdown, tests)."""
        pending = list(self._telemetry_tasks)
        if pending:
            logger.debug(f"Draining {len(pending)} telemetry record(s)")
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Commands ──────────────────────────────────────────────────────────────

    async def _chat_info(self, ctx: CommandContext) -> str:
        return f"conversationId: {ctx.event.conversation_id}, url: {ctx.event.service_url}"

    async def _setup(self, ctx: CommandContext) -> str:
        params = ServerIdParams.new(self._config.server_id_prefix, self._id_generator)
        await self._bind(ctx, params)
        return server_id_info(params.id, self._config.base_url)

    async def _set_server(self, ctx: CommandContext) -> str:
        raw = ctx.text[len(SET_SERVER_CMD):]
        params = ServerIdParams.parse(raw, self._config.server_id_prefix, self._id_generator)
        if not is_valid_server_id(params.id):
            ctx.log.info(f"Rejected server id '{params.id}'", stage="SETSERVER")
            return INVALID_SERVER_ID_MESSAGE
        await self._bind(ctx, params)
        return server_id_info(params.id, self._config.base_url)

    async def _get_server(self, ctx: CommandContext) -> str:
        event = ctx.event
        binding = await self._store.get(event.conversation_id, event.conversation_name)
        return server_id_info(binding.server_id if binding else None, self._config.base_url)

    async def _help(self, ctx: CommandContext) -> str:
        return HELP_MESSAGE

    async def _get_users(self, ctx: CommandContext) -> str:
        return f"Conversation id: {ctx.event.conversation_id}, name: {ctx.event.conversation_name}"

    async def _version(self, ctx: CommandContext) -> str:
        return VERSION_PROBE_REPLY

    async def _bind(self, ctx: CommandContext, params: ServerIdParams):
        event = ctx.event
        binding = Binding(
            conversation_id=event.conversation_id,
            server_id=params.id,
            conversation_name=event.conversation_name or "",
            replace_from=params.replace_from,
            replace_to=params.replace_to,
            bot_service_url=event.service_url or "",
            bot_id=event.recipient.id or "",
            bot_name=event.recipient.name or "",
        )
        await self._store.save(binding)
        ctx.log.info(f"Bound {binding.conversation_id} -> {binding.server_id}", stage="BIND")

    # ── System events ─────────────────────────────────────────────────────────

    async def _handle_system_event(self, event: InboundEvent, log: ActivityLogger) -> Optional[str]:
        handler = self.system_handlers.get(event.activity_type)
        if handler is None:
            log.debug(f"Unhandled activity type: {event.activity_type.value}", stage="SYSTEM")
            return None
        return await handler(event)

    async def _on_members_added(self, event: InboundEvent) -> Optional[str]:
        members = event.members_added
        if not members:
            return None
        # A lone member called "bot" is the bot joining; no greeting for that.
        if len(members) == 1 and (members[0].name or "").lower() == BOT_MEMBER_NAME:
            return None
        return WELCOME_MESSAGE

    async def _on_contact_relation_update(self, event: InboundEvent) -> Optional[str]:
        return WELCOME_MESSAGE

    async def _ignore(self, event: InboundEvent) -> Optional[str]:
        return None
