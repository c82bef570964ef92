"""Unit tests for the per-connection state machine."""

from __future__ import annotations

import asyncio

from roomrelay.constants import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    HANDSHAKE_TIMEOUT_REASON,
    IDLE_TIMEOUT_REASON,
)
from roomrelay.lifecycle import ConnectionLifecycle, ConnectionState
from roomrelay.registry import ClientInfo, RoomRegistry
from roomrelay.router import MessageRouter
from tests.fakes import FakeChannel, wait_until


class _Room:
    """Registry + router pair with a helper to start lifecycles."""

    def __init__(self, key: str = "table1", **timeouts: float) -> None:
        self.key = key
        self.registry = RoomRegistry()
        self.router = MessageRouter(self.registry)
        self.timeouts = {"handshake_timeout": 1.0, "ping_interval": 0.05, "idle_timeout": 5.0}
        self.timeouts.update(timeouts)

    def start(self, client_id: str, **overrides) -> tuple[ConnectionLifecycle, FakeChannel, asyncio.Task]:
        channel = FakeChannel()
        options = dict(self.timeouts)
        options.update(overrides)
        lifecycle = ConnectionLifecycle(
            self.key, channel, self.registry, self.router, client_id=client_id, **options
        )
        return lifecycle, channel, asyncio.create_task(lifecycle.run())

    async def join(self, client_id: str, name: str, **overrides):
        lifecycle, channel, task = self.start(client_id, **overrides)
        await wait_until(lambda: lifecycle.state is ConnectionState.HANDSHAKING)
        channel.feed_json({"type": "my_name_is", "name": name})
        await wait_until(lambda: lifecycle.state is ConnectionState.CONNECTED)
        return lifecycle, channel, task


def test_handshake_promotes_client_and_announces_join() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, alice_task = await room.join("a", "Alice")
        assert alice.sent == [{"type": "welcome", "clientId": "a", "users": []}]

        bob_lc, bob, bob_task = await room.join("b", "Bob")

        assert bob.sent[0] == {"type": "welcome", "clientId": "b", "users": [{"id": "a", "name": "Alice"}]}
        await wait_until(lambda: alice.of_type("player_joined"))
        assert alice.of_type("player_joined") == [
            {"type": "player_joined", "clientId": "b", "player": {"id": "b", "name": "Bob"}}
        ]
        assert bob.of_type("player_joined") == []
        assert bob_lc.client.name == "Bob"
        assert room.registry.counts("table1") == (0, 2)

        alice.hang_up()
        bob.hang_up()
        await asyncio.gather(alice_task, bob_task)

    asyncio.run(_run())


def test_handshake_ignores_other_messages_until_name_arrives() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")

        lifecycle, bob, task = room.start("b")
        await wait_until(lambda: lifecycle.state is ConnectionState.HANDSHAKING)
        bob.feed("{broken")
        bob.feed_binary()
        bob.feed_json({"type": "chat", "text": "too early"})
        bob.feed_json({"type": "who_is", "queryClientId": "a"})
        bob.feed_json({"type": "my_name_is", "name": "   "})
        await asyncio.sleep(0.05)
        assert lifecycle.state is ConnectionState.HANDSHAKING
        assert room.registry.lookup("table1", "b") is None
        assert alice.of_type("chat") == []
        assert len(bob.sent) == 1

        bob.feed_json({"type": "my_name_is", "name": "Bob"})
        await wait_until(lambda: lifecycle.state is ConnectionState.CONNECTED)
        assert room.registry.lookup("table1", "b").name == "Bob"

        bob.hang_up()
        await task

    asyncio.run(_run())


def test_handshake_timeout_closes_with_policy_violation_and_no_broadcast() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")

        lifecycle, silent, task = room.start("s", handshake_timeout=0.05)
        final_state = await asyncio.wait_for(task, 1.0)

        assert final_state is ConnectionState.CLOSED
        assert lifecycle.joined is False
        assert silent.close_calls == [(CLOSE_POLICY_VIOLATION, HANDSHAKE_TIMEOUT_REASON)]
        assert room.registry.counts("table1") == (0, 1)
        assert alice.of_type("player_joined") == []
        assert alice.of_type("player_left") == []

    asyncio.run(_run())


def test_ignored_messages_do_not_extend_handshake_deadline() -> None:
    async def _run() -> None:
        room = _Room()
        lifecycle, chatty, task = room.start("c", handshake_timeout=0.1)

        async def chatter() -> None:
            while not task.done():
                chatty.feed_json({"type": "chat"})
                await asyncio.sleep(0.01)

        chatter_task = asyncio.create_task(chatter())
        final_state = await asyncio.wait_for(task, 1.0)
        await chatter_task

        assert final_state is ConnectionState.CLOSED
        assert chatty.close_calls == [(CLOSE_POLICY_VIOLATION, HANDSHAKE_TIMEOUT_REASON)]
        assert not lifecycle.joined

    asyncio.run(_run())


def test_disconnect_during_handshake_is_silent() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")

        lifecycle, quitter, task = room.start("q")
        await wait_until(lambda: lifecycle.state is ConnectionState.HANDSHAKING)
        quitter.hang_up()
        await task

        assert room.registry.counts("table1") == (0, 1)
        assert alice.of_type("player_left") == []
        assert quitter.close_calls == []

    asyncio.run(_run())


def test_messages_are_broadcast_to_others_unchanged() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")
        _, bob, _ = await room.join("b", "Bob")
        _, carol, _ = await room.join("c", "Carol")

        payload = {"type": "move", "clientId": "a", "pos": [1, 2], "meta": {"speed": 3}}
        alice.feed_json(payload)
        await wait_until(lambda: bob.of_type("move") and carol.of_type("move"))

        assert bob.of_type("move") == [payload]
        assert carol.of_type("move") == [payload]
        assert alice.of_type("move") == []

    asyncio.run(_run())


def test_messages_from_one_connection_keep_their_order() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")
        _, bob, _ = await room.join("b", "Bob")

        for seq in range(20):
            alice.feed_json({"type": "tick", "seq": seq})
        await wait_until(lambda: len(bob.of_type("tick")) == 20)

        assert [m["seq"] for m in bob.of_type("tick")] == list(range(20))

    asyncio.run(_run())


def test_malformed_messages_after_join_are_ignored() -> None:
    async def _run() -> None:
        room = _Room()
        lifecycle, alice, _ = await room.join("a", "Alice")
        _, bob, _ = await room.join("b", "Bob")
        sent_before = len(bob.sent)

        alice.feed("nonsense")
        alice.feed_json({"no": "type"})
        alice.feed_binary()
        alice.feed_json({"type": "ping"})
        await wait_until(lambda: bob.of_type("ping"))

        assert len(bob.sent) == sent_before + 1
        assert lifecycle.state is ConnectionState.CONNECTED

    asyncio.run(_run())


def test_who_is_replies_to_requester_only() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")
        _, bob, _ = await room.join("b", "Bob")
        _, carol, _ = await room.join("c", "Carol")
        await wait_until(lambda: len(alice.of_type("player_joined")) == 2)
        alice_seen, bob_seen, carol_seen = len(alice.sent), len(bob.sent), len(carol.sent)

        alice.feed_json({"type": "who_is", "clientId": "a", "queryClientId": "b"})
        alice.feed_json({"type": "who_is", "clientId": "a", "queryClientId": "nobody"})
        alice.feed_json({"type": "who_is", "clientId": "a", "queryClientId": "c"})
        await wait_until(lambda: len(alice.sent) == alice_seen + 2)

        assert alice.sent[alice_seen:] == [
            {"type": "player_joined", "clientId": "b", "player": {"id": "b", "name": "Bob"}},
            {"type": "player_joined", "clientId": "c", "player": {"id": "c", "name": "Carol"}},
        ]
        assert len(bob.sent) == bob_seen
        assert len(carol.sent) == carol_seen

    asyncio.run(_run())


def test_disconnect_announces_player_left_to_remaining_members() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")
        bob_lc, bob, bob_task = await room.join("b", "Bob")

        bob.hang_up()
        assert await bob_task is ConnectionState.CLOSED

        assert alice.of_type("player_left") == [{"type": "player_left", "clientId": "b"}]
        assert bob.of_type("player_left") == []
        assert room.registry.lookup("table1", "b") is None
        assert bob_lc.state is ConnectionState.CLOSED

        before = len(alice.sent)
        alice.feed_json({"type": "who_is", "queryClientId": "b"})
        alice.feed_json({"type": "who_is", "queryClientId": "a"})
        await wait_until(lambda: len(alice.sent) == before + 1)
        assert alice.sent[-1]["player"] == {"id": "a", "name": "Alice"}

    asyncio.run(_run())


def test_silent_client_is_dropped_after_idle_timeout() -> None:
    async def _run() -> None:
        room = _Room(ping_interval=0.02, idle_timeout=0.06)
        _, alice, _ = await room.join("a", "Alice", idle_timeout=5.0)
        _, idle, idle_task = await room.join("i", "Idle")

        final_state = await asyncio.wait_for(idle_task, 1.0)

        assert final_state is ConnectionState.CLOSED
        assert idle.close_calls == [(CLOSE_GOING_AWAY, IDLE_TIMEOUT_REASON)]
        assert alice.of_type("player_left") == [{"type": "player_left", "clientId": "i"}]
        assert room.registry.lookup("table1", "i") is None

    asyncio.run(_run())


def test_traffic_keeps_connection_alive() -> None:
    async def _run() -> None:
        room = _Room(ping_interval=0.02, idle_timeout=0.06)
        lifecycle, busy, task = await room.join("b", "Busy")

        for _ in range(10):
            busy.feed_binary()
            await asyncio.sleep(0.02)

        assert lifecycle.state is ConnectionState.CONNECTED
        assert not task.done()
        busy.hang_up()
        await task

    asyncio.run(_run())


def test_read_error_cleans_up_connection() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")
        _, bob, bob_task = await room.join("b", "Bob")

        bob.fail_receive = True
        bob.feed("anything")
        await bob_task

        assert room.registry.lookup("table1", "b") is None
        assert alice.of_type("player_left") == [{"type": "player_left", "clientId": "b"}]

    asyncio.run(_run())


def test_registry_violation_aborts_only_that_connection() -> None:
    async def _run() -> None:
        room = _Room()
        _, alice, _ = await room.join("a", "Alice")
        room.registry.add_pending("table1", ClientInfo(id="dup", channel=FakeChannel()))

        lifecycle, dup, task = room.start("dup")
        final_state = await asyncio.wait_for(task, 1.0)

        assert final_state is ConnectionState.CLOSED
        assert dup.close_calls == [(CLOSE_INTERNAL_ERROR, "Internal error")]
        assert dup.sent == []
        assert room.registry.counts("table1") == (1, 1)
        assert alice.of_type("player_left") == []
        assert room.registry.lookup("table1", "a") is not None

    asyncio.run(_run())


def test_rooms_are_isolated() -> None:
    async def _run() -> None:
        room1 = _Room("one")
        room2 = _Room("two")
        room2.registry = room1.registry
        room2.router = room1.router
        _, alice, _ = await room1.join("a", "Alice")
        _, bob, _ = await room2.join("b", "Bob")

        assert bob.sent[0]["users"] == []
        alice.feed_json({"type": "chat", "text": "hello"})
        await asyncio.sleep(0.05)
        assert bob.of_type("chat") == []
        assert alice.of_type("player_joined") == []

    asyncio.run(_run())


def test_name_messages_after_join_are_relayed_like_any_other_type() -> None:
    async def _run() -> None:
        room = _Room()
        lifecycle, alice, _ = await room.join("a", "Alice")
        _, bob, _ = await room.join("b", "Bob")

        alice.feed_json({"type": "my_name_is", "name": ""})
        alice.feed_json({"type": "my_name_is"})
        alice.feed_json({"type": "my_name_is", "name": "Alicia"})
        alice.feed_json({"type": "tick"})
        await wait_until(lambda: bob.of_type("tick"))

        assert bob.of_type("my_name_is") == [
            {"type": "my_name_is", "name": ""},
            {"type": "my_name_is"},
            {"type": "my_name_is", "name": "Alicia"},
        ]
        assert lifecycle.client.name == "Alice"
        assert room.registry.lookup("table1", "a").name == "Alice"

    asyncio.run(_run())


def test_deeply_nested_frame_is_ignored_and_connection_stays_up() -> None:
    async def _run() -> None:
        room = _Room()
        lifecycle, alice, task = await room.join("a", "Alice")
        _, bob, _ = await room.join("b", "Bob")

        alice.feed("[" * 200000 + "]" * 200000)
        alice.feed_json({"type": "tick"})
        await wait_until(lambda: bob.of_type("tick"))

        assert lifecycle.state is ConnectionState.CONNECTED
        assert not task.done()
        assert alice.close_calls == []

    asyncio.run(_run())
