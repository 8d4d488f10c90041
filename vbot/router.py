from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable

from vbot.commands.registry import CommandRegistry
from vbot.models import CommandInvocation, InboundMessage
from vbot.presence import Presence
from vbot.session import Credentials, CredentialsError, RouterState, Session, SessionStore
from vbot.transport.base import (
    Connection,
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
)
from vbot.utils import strip_bot_suffix

GENERIC_ERROR_TEXT = "❌ An error occurred while processing your message!"

ConnectionFactory = Callable[[Credentials], Connection]

logger = logging.getLogger("router")


class LoggedOutError(Exception):
    """Raised by ``wait_closed`` when the account was logged out remotely."""


def parse_command(body: str, prefix: str, *, bot_username: str | None = None) -> CommandInvocation | None:
    body = body.strip()
    if not body.startswith(prefix):
        return None
    parts = body[len(prefix) :].strip().split(None, 1)
    if not parts:
        return None
    name = strip_bot_suffix(parts[0].lower(), bot_username)
    argument_text = parts[1].strip() if len(parts) > 1 else ""
    return CommandInvocation(command_name=name, argument_text=argument_text)


def route_message(
    message: InboundMessage,
    prefix: str,
    startup_time: int | None,
    *,
    bot_username: str | None = None,
) -> CommandInvocation | None:
    """Apply the eligibility filters in order, then parse the command.

    Returns ``None`` for anything that must be ignored silently.
    """
    body = message.body_text
    if not body:
        return None
    if message.is_from_self:
        logger.debug("Ignoring own message %s", message.message_id)
        return None
    if message.is_broadcast_status:
        logger.debug("Ignoring broadcast message %s", message.message_id)
        return None
    if startup_time is not None and message.timestamp < startup_time:
        logger.info(
            "Ignoring message %s sent before startup (ts=%s, startup=%s)",
            message.message_id,
            message.timestamp,
            startup_time,
        )
        return None
    return parse_command(body, prefix, bot_username=bot_username)


class MessageRouter:
    def __init__(
        self,
        session: Session,
        registry: CommandRegistry,
        presence: Presence,
        store: SessionStore,
        connection_factory: ConnectionFactory,
        *,
        configured_token: str = "",
        reconnect_delay: float = 5.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session = session
        self._registry = registry
        self._presence = presence
        self._store = store
        self._factory = connection_factory
        self._configured_token = configured_token
        self._reconnect_delay = reconnect_delay
        self._clock = clock
        self._sleep = sleep
        self._state = RouterState.DISCONNECTED
        self._credentials: Credentials | None = None
        self._runner: asyncio.Task[None] | None = None
        self._batches: set[asyncio.Task[None]] = set()
        self._stopping = False

    @property
    def state(self) -> RouterState:
        return self._state

    @property
    def session(self) -> Session:
        return self._session

    def _set_state(self, state: RouterState) -> None:
        if state is not self._state:
            logger.info("Router state %s -> %s", self._state.value, state.value)
            self._state = state

    async def start(self) -> None:
        """Load credentials and begin connecting. Safe to call more than once."""
        if self._runner is not None or self._stopping:
            return
        try:
            self._credentials = self._store.load_or_create(self._configured_token)
        except CredentialsError:
            logger.error("Failed to load session from %s", self._store.directory)
            raise
        self._session.bot_username = self._credentials.bot_username
        self._runner = asyncio.create_task(self._run(), name="router")

    async def stop(self) -> None:
        if self._stopping:
            return
        self._stopping = True
        logger.info("Stopping bot")
        runner = self._runner
        if runner is not None and not runner.done():
            runner.cancel()
            try:
                await runner
            except (asyncio.CancelledError, LoggedOutError):
                pass
        await self._close_connection()
        self._set_state(RouterState.TERMINATED)

    async def wait_closed(self) -> None:
        """Wait for the run loop to finish; raises ``LoggedOutError`` on remote logout."""
        if self._runner is None:
            return
        try:
            await asyncio.shield(self._runner)
        except asyncio.CancelledError:
            if not self._runner.cancelled():
                raise

    async def _close_connection(self) -> None:
        connection = self._session.connection
        self._session.connection = None
        if connection is None:
            return
        try:
            await connection.close()
        except Exception:
            logger.exception("Error closing connection")

    async def _run(self) -> None:
        while not self._stopping:
            self._set_state(RouterState.CONNECTING)
            update = await self._connect_and_consume()
            await self._close_connection()
            reason = update.reason or DisconnectReason.CONNECTION_LOST
            if not reason.recoverable:
                self._set_state(RouterState.TERMINATED)
                logger.error(
                    "Logged out (%s). Delete %s and set a valid TELEGRAM_BOT_TOKEN, then restart.",
                    update.detail or reason.value,
                    self._store.directory,
                )
                raise LoggedOutError(update.detail or reason.value)
            self._set_state(RouterState.RECONNECTING)
            logger.warning(
                "Connection closed (%s), reconnecting in %.1fs",
                update.detail or reason.value,
                self._reconnect_delay,
            )
            await self._sleep(self._reconnect_delay)

    async def _connect_and_consume(self) -> ConnectionUpdate:
        assert self._credentials is not None
        connection = self._factory(self._credentials)
        self._session.connection = connection
        try:
            await connection.open()
        except Exception as exc:
            logger.exception("Failed to open connection")
            return ConnectionUpdate(ConnectionState.CLOSE, DisconnectReason.CONNECTION_LOST, str(exc))

        while True:
            event = await connection.events.get()
            if isinstance(event, ConnectionUpdate):
                if event.state is ConnectionState.OPEN:
                    self._on_ready()
                elif event.state is ConnectionState.CLOSE:
                    return event
            elif isinstance(event, MessagesUpsert):
                self._dispatch_batch(event.messages, connection)
            elif isinstance(event, CredentialsUpdate):
                self._on_credentials(event.credentials)
            else:
                logger.warning("Unknown transport event %r", event)

    def _on_ready(self) -> None:
        now = int(self._clock())
        if self._session.mark_ready(now):
            logger.info("Bot is ready, startup time %s", now)
        else:
            logger.info("Reconnected, keeping startup time %s", self._session.startup_time)
        self._set_state(RouterState.CONNECTED)

    def _on_credentials(self, credentials: Credentials) -> None:
        self._credentials = credentials
        self._session.bot_username = credentials.bot_username
        try:
            self._store.save(credentials)
        except OSError:
            logger.exception("Failed to persist credentials")

    def _dispatch_batch(self, messages: tuple[InboundMessage, ...], connection: Connection) -> None:
        task = asyncio.create_task(self._process_batch(messages, connection))
        self._batches.add(task)
        task.add_done_callback(self._batches.discard)

    async def _process_batch(self, messages: tuple[InboundMessage, ...], connection: Connection) -> None:
        for message in messages:
            await self.on_message(message, connection)

    async def on_message(self, message: InboundMessage, connection: Connection) -> None:
        """Route one message. Never raises."""
        try:
            invocation = route_message(
                message,
                self._session.prefix,
                self._session.startup_time,
                bot_username=self._session.bot_username,
            )
            if invocation is None:
                return
            command = self._registry.get(invocation.command_name)
            if command is None:
                logger.info("Unknown command %r from chat=%s", invocation.command_name, message.chat_id)
                return
            logger.info(
                "Command %s from chat=%s sender=%s",
                invocation.command_name,
                message.chat_id,
                message.sender_id,
            )
            await command.execute(message, connection, invocation.argument_text)
        except Exception:
            logger.exception("Error handling message %s in chat=%s", message.message_id, message.chat_id)
            try:
                await self._presence.error(connection, message)
                await connection.send_text(message.chat_id, GENERIC_ERROR_TEXT, reply_to=message.message_id)
            except Exception:
                logger.exception("Failed to send error reply to chat=%s", message.chat_id)
