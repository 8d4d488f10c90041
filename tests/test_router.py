from __future__ import annotations

import asyncio

import pytest

from conftest import REACTIONS, FakeConnection, make_message, wait_for
from vbot.commands.registry import CommandRegistry
from vbot.presence import Presence
from vbot.router import GENERIC_ERROR_TEXT, LoggedOutError, MessageRouter, parse_command, route_message
from vbot.security import CredentialCipher
from vbot.session import Credentials, CredentialsError, RouterState, Session, SessionStore
from vbot.transport.base import (
    ConnectionState,
    ConnectionUpdate,
    CredentialsUpdate,
    DisconnectReason,
    MessagesUpsert,
)


class RecordingCommand:
    def __init__(self, name: str, aliases: tuple[str, ...] = (), *, fail: bool = False) -> None:
        self.name = name
        self.aliases = aliases
        self.description = name
        self.calls: list[tuple[int, str]] = []
        self.fail = fail

    async def execute(self, message, connection, args) -> None:
        self.calls.append((message.message_id, args))
        if self.fail:
            raise RuntimeError("boom")


class Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def build_router(tmp_path, commands, *, clock=None, token="123:abc"):
    connections: list[FakeConnection] = []
    sleeps: list[float] = []

    def factory(credentials: Credentials) -> FakeConnection:
        conn = FakeConnection(credentials)
        connections.append(conn)
        return conn

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)

    router = MessageRouter(
        Session(prefix="."),
        CommandRegistry(commands),
        Presence(REACTIONS, typing_sec=0.0),
        SessionStore(tmp_path / "session", CredentialCipher(None)),
        factory,
        configured_token=token,
        reconnect_delay=5.0,
        clock=clock or Clock(),
        sleep=fake_sleep,
    )
    return router, connections, sleeps


class TestParseCommand:
    def test_lowercases_command_and_keeps_argument_text(self) -> None:
        inv = parse_command(".TT https://vm.tiktok.com/abc  extra", ".")
        assert inv is not None
        assert inv.command_name == "tt"
        assert inv.argument_text == "https://vm.tiktok.com/abc  extra"

    def test_whitespace_after_prefix_is_skipped(self) -> None:
        inv = parse_command(".  yt url", ".")
        assert inv is not None
        assert inv.command_name == "yt"
        assert inv.argument_text == "url"

    def test_no_prefix(self) -> None:
        assert parse_command("hello", ".") is None

    def test_leading_whitespace_is_trimmed(self) -> None:
        inv = parse_command("  .Help  ", ".")
        assert inv is not None
        assert inv.command_name == "help"
        assert inv.argument_text == ""

    def test_bare_prefix(self) -> None:
        assert parse_command(".", ".") is None
        assert parse_command(".   ", ".") is None

    def test_strips_own_bot_mention(self) -> None:
        inv = parse_command("/help@MyBot", "/", bot_username="mybot")
        assert inv is not None
        assert inv.command_name == "help"

    def test_keeps_foreign_bot_mention(self) -> None:
        inv = parse_command("/help@other_bot", "/", bot_username="mybot")
        assert inv is not None
        assert inv.command_name == "help@other_bot"


class TestRouteMessage:
    def test_stale_message_dropped(self) -> None:
        assert route_message(make_message(".help", timestamp=999), ".", 1_000) is None

    def test_message_at_startup_second_accepted(self) -> None:
        assert route_message(make_message(".help", timestamp=1_000), ".", 1_000) is not None

    def test_routed_when_startup_time_unset(self) -> None:
        inv = route_message(make_message(".help", timestamp=5), ".", None)
        assert inv is not None
        assert inv.command_name == "help"

    def test_no_text(self) -> None:
        assert route_message(make_message(None), ".", 1_000) is None
        assert route_message(make_message(""), ".", 1_000) is None

    def test_from_self(self) -> None:
        assert route_message(make_message(".help", is_from_self=True), ".", 1_000) is None

    def test_broadcast(self) -> None:
        assert route_message(make_message(".help", is_broadcast_status=True), ".", 1_000) is None


class TestOnMessage:
    @pytest.mark.asyncio
    async def test_stale_message_has_no_effect(self, tmp_path) -> None:
        help_cmd = RecordingCommand("help")
        router, _, _ = build_router(tmp_path, [help_cmd])
        router.session.startup_time = 1_000
        conn = FakeConnection()

        await router.on_message(make_message(".help", timestamp=999), conn)

        assert help_cmd.calls == []
        assert conn.sent == []
        assert conn.reactions == []

    @pytest.mark.asyncio
    async def test_message_without_prefix_is_ignored(self, tmp_path) -> None:
        help_cmd = RecordingCommand("help")
        router, _, _ = build_router(tmp_path, [help_cmd])
        router.session.startup_time = 1_000
        conn = FakeConnection()

        await router.on_message(make_message("hello", timestamp=1_001), conn)

        assert help_cmd.calls == []
        assert conn.sent == []
        assert conn.reactions == []

    @pytest.mark.asyncio
    async def test_alias_dispatch_case_insensitive(self, tmp_path) -> None:
        tiktok = RecordingCommand("tiktok", ("tt",))
        router, _, _ = build_router(tmp_path, [tiktok])
        router.session.startup_time = 1_000
        conn = FakeConnection()

        await router.on_message(make_message(".TT https://vm.tiktok.com/abc", timestamp=1_001), conn)

        assert tiktok.calls == [(1, "https://vm.tiktok.com/abc")]

    @pytest.mark.asyncio
    async def test_unknown_command_is_silent(self, tmp_path) -> None:
        router, _, _ = build_router(tmp_path, [RecordingCommand("help")])
        router.session.startup_time = 1_000
        conn = FakeConnection()

        await router.on_message(make_message(".nope", timestamp=1_001), conn)

        assert conn.sent == []
        assert conn.reactions == []

    @pytest.mark.asyncio
    async def test_handler_exception_becomes_error_reply(self, tmp_path) -> None:
        router, _, _ = build_router(tmp_path, [RecordingCommand("boom", fail=True)])
        router.session.startup_time = 1_000
        conn = FakeConnection()

        await router.on_message(make_message(".boom", timestamp=1_001, message_id=7), conn)

        assert conn.reactions == [(7, "E")]
        assert conn.sent == [("text", 100, GENERIC_ERROR_TEXT, 7)]

    @pytest.mark.asyncio
    async def test_failed_error_reply_is_swallowed(self, tmp_path) -> None:
        router, _, _ = build_router(tmp_path, [RecordingCommand("boom", fail=True)])
        router.session.startup_time = 1_000
        conn = FakeConnection()
        conn.fail_sends = True

        await router.on_message(make_message(".boom", timestamp=1_001), conn)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_sets_startup_time_and_dispatches(self, tmp_path) -> None:
        help_cmd = RecordingCommand("help")
        router, connections, _ = build_router(tmp_path, [help_cmd], clock=Clock(1_000))

        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)
        assert router.session.startup_time == 1_000

        connections[0].events.put_nowait(
            MessagesUpsert((make_message(".help", timestamp=999, message_id=1), make_message(".help", timestamp=1_000, message_id=2)))
        )
        await wait_for(lambda: len(help_cmd.calls) == 1)
        assert help_cmd.calls == [(2, "")]
        await router.stop()

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, tmp_path) -> None:
        router, connections, _ = build_router(tmp_path, [])
        await router.start()
        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)
        assert len(connections) == 1
        await router.stop()

    @pytest.mark.asyncio
    async def test_start_without_credentials_fails(self, tmp_path) -> None:
        router, connections, _ = build_router(tmp_path, [], token="")
        with pytest.raises(CredentialsError):
            await router.start()
        assert connections == []

    @pytest.mark.asyncio
    async def test_recoverable_close_reconnects_and_keeps_startup_time(self, tmp_path) -> None:
        help_cmd = RecordingCommand("help")
        clock = Clock(1_000)
        router, connections, sleeps = build_router(tmp_path, [help_cmd], clock=clock)
        states: list[RouterState] = []
        set_state = router._set_state

        def record_state(state: RouterState) -> None:
            states.append(state)
            set_state(state)

        router._set_state = record_state
        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)

        clock.now = 5_000
        connections[0].events.put_nowait(
            ConnectionUpdate(ConnectionState.CLOSE, DisconnectReason.CONNECTION_LOST)
        )
        await wait_for(lambda: len(connections) == 2 and router.state is RouterState.CONNECTED)

        assert connections[0].closed
        assert sleeps == [5.0]
        assert router.session.startup_time == 1_000
        assert router.session.connection is connections[1]
        assert states == [
            RouterState.CONNECTING,
            RouterState.CONNECTED,
            RouterState.RECONNECTING,
            RouterState.CONNECTING,
            RouterState.CONNECTED,
        ]

        connections[1].events.put_nowait(MessagesUpsert((make_message(".help", timestamp=1_500),)))
        await wait_for(lambda: len(help_cmd.calls) == 1)
        await router.stop()

    @pytest.mark.asyncio
    async def test_logged_out_terminates_without_reconnect(self, tmp_path) -> None:
        router, connections, sleeps = build_router(tmp_path, [])
        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)

        connections[0].events.put_nowait(ConnectionUpdate(ConnectionState.CLOSE, DisconnectReason.LOGGED_OUT))
        with pytest.raises(LoggedOutError):
            await asyncio.wait_for(router.wait_closed(), timeout=2.0)

        assert router.state is RouterState.TERMINATED
        assert len(connections) == 1
        assert connections[0].closed
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_stop_is_idempotent(self, tmp_path) -> None:
        router, connections, _ = build_router(tmp_path, [])
        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)

        await router.stop()
        await router.stop()

        assert router.state is RouterState.TERMINATED
        assert connections[0].closed
        await router.wait_closed()

    @pytest.mark.asyncio
    async def test_credentials_update_is_persisted(self, tmp_path) -> None:
        router, connections, _ = build_router(tmp_path, [])
        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)

        connections[0].events.put_nowait(CredentialsUpdate(Credentials("123:abc", bot_id=9, bot_username="vbot")))
        await wait_for(lambda: router.session.bot_username == "vbot")

        stored = SessionStore(tmp_path / "session", CredentialCipher(None)).load()
        assert stored is not None
        assert stored.bot_id == 9
        await router.stop()

    @pytest.mark.asyncio
    async def test_batches_run_concurrently(self, tmp_path) -> None:
        release = asyncio.Event()
        started: list[int] = []

        class SlowCommand(RecordingCommand):
            async def execute(self, message, connection, args) -> None:
                started.append(message.message_id)
                if message.message_id == 1:
                    await release.wait()

        router, connections, _ = build_router(tmp_path, [SlowCommand("slow")])
        await router.start()
        await wait_for(lambda: router.state is RouterState.CONNECTED)

        connections[0].events.put_nowait(MessagesUpsert((make_message(".slow", timestamp=1_001, message_id=1),)))
        connections[0].events.put_nowait(MessagesUpsert((make_message(".slow", timestamp=1_001, message_id=2),)))
        await wait_for(lambda: started == [1, 2])
        release.set()
        await asyncio.sleep(0.01)
        await router.stop()
