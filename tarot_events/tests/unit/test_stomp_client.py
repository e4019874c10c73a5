"""Unit tests for the STOMP client lifecycle against an in-memory broker."""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from tarot_events.events.dispatcher import EventHandlerRegistry
from tarot_events.tests.fakes import CONNECTED_FRAME, FakeBroker, message_frame, settle
from tarot_events.transport.stomp_client import (
    ConnectionState,
    LiveConnectionRegistry,
    StompConfig,
    StompEventClient,
)
from tarot_events.transport.stomp_frames import StompFrame, decode_frames

CONFIG = StompConfig(url="ws://broker.test:8083/ws", connect_timeout_seconds=1.0)


def _client(broker: FakeBroker, sink=None, **kwargs) -> StompEventClient:
    kwargs.setdefault("user_id", "u1")
    kwargs.setdefault("process_id", "p1")
    return StompEventClient(
        sink=sink or EventHandlerRegistry(),
        config=CONFIG,
        connect_factory=broker.connect,
        **kwargs,
    )


def test_handshake_subscribes_and_registers_with_correlation_ids(broker) -> None:
    async def scenario():
        client = _client(broker)
        connected = await client.connect()
        await client.disconnect()
        return client, connected

    client, connected = asyncio.run(scenario())

    assert connected is True
    assert broker.urls == ["ws://broker.test:8083/ws?userId=u1&processId=p1"]
    sent = [decode_frames(item)[0] for item in broker.last.sent]
    assert [frame.command for frame in sent] == ["CONNECT", "SUBSCRIBE", "SEND", "DISCONNECT"]
    assert sent[0].headers["host"] == "broker.test"
    assert sent[1].headers["destination"] == "/user/topic/messages"
    assert sent[2].headers["destination"] == "/app/register"
    assert sent[2].headers["userId"] == "u1"
    assert sent[2].headers["processId"] == "p1"
    assert json.loads(sent[2].body) == {}
    assert client.state is ConnectionState.DISCONNECTED


def test_second_connect_on_active_client_opens_nothing(broker) -> None:
    async def scenario():
        client = _client(broker)
        first = await client.connect()
        second = await client.connect()
        state = client.state
        await client.disconnect()
        return first, second, state

    first, second, state = asyncio.run(scenario())

    assert (first, second) == (True, False)
    assert state is ConnectionState.SUBSCRIBED
    assert len(broker.urls) == 1


def test_shared_live_pairs_allow_one_connection_per_pair(broker) -> None:
    live = LiveConnectionRegistry()

    async def scenario():
        first = _client(broker, live_pairs=live)
        second = _client(broker, live_pairs=live)
        results = (await first.connect(), await second.connect())
        during = live.is_live(("u1", "p1"))
        await first.disconnect()
        return results, during, second.state

    results, during, second_state = asyncio.run(scenario())

    assert results == (True, False)
    assert during is True
    assert second_state is ConnectionState.IDLE
    assert len(broker.urls) == 1
    assert len(live) == 0


def test_missing_ids_skip_connection(broker) -> None:
    async def scenario():
        return (
            await _client(broker, user_id="").connect(),
            await _client(broker, process_id="").connect(),
        )

    assert asyncio.run(scenario()) == (False, False)
    assert broker.urls == []


def test_inbound_message_is_validated_and_dispatched(broker, samples) -> None:
    seen: list[object] = []
    registry = EventHandlerRegistry().register("payment.completed", seen.append)

    async def scenario():
        client = _client(broker, sink=registry)
        await client.connect()
        broker.last.push(message_frame(samples["payment.completed"]))
        await settle(client)
        await client.disconnect()

    asyncio.run(scenario())

    assert len(seen) == 1
    assert seen[0].message == "ok"


def test_non_json_body_is_dropped_without_touching_the_sink(broker, samples) -> None:
    fallback: list[object] = []
    typed: list[object] = []
    registry = EventHandlerRegistry()
    registry.register("error.business", typed.append)
    registry.register_unknown_handler(fallback.append)

    async def scenario():
        client = _client(broker, sink=registry)
        await client.connect()
        broker.last.push(message_frame("not json", message_id="m-1"))
        broker.last.push(message_frame(samples["error.business"], message_id="m-2"))
        await settle(client)
        state = client.state
        await client.disconnect()
        return state

    state = asyncio.run(scenario())

    assert state is ConnectionState.SUBSCRIBED
    assert fallback == []
    assert len(typed) == 1


def test_send_requires_an_active_subscription(broker) -> None:
    async def scenario():
        client = _client(broker)
        before = await client.send("/app/ping", {"a": 1})
        await client.connect()
        during = await client.send("/app/ping", {"a": 1})
        await client.disconnect()
        after = await client.send("/app/ping", {"a": 1})
        return before, during, after

    before, during, after = asyncio.run(scenario())

    assert (before, during, after) == (False, True, False)
    frame = decode_frames(broker.last.sent[3])[0]
    assert frame.command == "SEND"
    assert frame.headers["destination"] == "/app/ping"
    assert json.loads(frame.body) == {"a": 1}


def test_disconnect_is_idempotent(broker) -> None:
    async def scenario():
        client = _client(broker)
        await client.disconnect()
        await client.connect()
        await client.disconnect()
        await client.disconnect()
        return client.state

    state = asyncio.run(scenario())

    assert state is ConnectionState.DISCONNECTED
    assert broker.last.closed is True
    assert broker.last.sent_commands().count("DISCONNECT") == 1


def test_broker_error_reply_leaves_client_errored_without_retry(broker) -> None:
    broker.handshake_reply = StompFrame("ERROR", {"message": "bad credentials"}).encode()

    async def scenario():
        client = _client(broker)
        result = await client.connect()
        await asyncio.sleep(0.02)
        return result, client.state

    result, state = asyncio.run(scenario())

    assert result is False
    assert state is ConnectionState.ERRORED
    assert len(broker.urls) == 1
    assert broker.last.closed is True


def test_unreachable_broker_is_errored_and_releases_the_pair(broker) -> None:
    broker.fail_with = OSError("connection refused")
    live = LiveConnectionRegistry()

    async def scenario():
        client = _client(broker, live_pairs=live)
        return await client.connect(), client.state

    result, state = asyncio.run(scenario())

    assert result is False
    assert state is ConnectionState.ERRORED
    assert len(live) == 0


def test_errored_client_can_connect_again_on_request(broker) -> None:
    broker.fail_with = OSError("connection refused")

    async def scenario():
        client = _client(broker)
        first = await client.connect()
        broker.fail_with = None
        second = await client.connect()
        await client.disconnect()
        return first, second

    assert asyncio.run(scenario()) == (False, True)
    assert len(broker.urls) == 2


def test_peer_close_moves_client_to_errored(broker) -> None:
    live = LiveConnectionRegistry()

    async def scenario():
        client = _client(broker, live_pairs=live)
        await client.connect()
        broker.last.peer_close()
        await settle()
        return client.state

    assert asyncio.run(scenario()) is ConnectionState.ERRORED
    assert len(live) == 0


def test_error_frame_after_subscribe_moves_client_to_errored(broker) -> None:
    async def scenario():
        client = _client(broker)
        await client.connect()
        broker.last.push(StompFrame("ERROR", {"message": "session expired"}).encode())
        await settle()
        return client.state

    assert asyncio.run(scenario()) is ConnectionState.ERRORED
    assert broker.last.closed is True


def test_malformed_frame_is_dropped_and_stream_continues(broker, samples) -> None:
    seen: list[object] = []
    registry = EventHandlerRegistry().register("error.technical", seen.append)

    async def scenario():
        client = _client(broker, sink=registry)
        await client.connect()
        broker.last.push("MESSAGE\nno-terminator")
        broker.last.push(message_frame(samples["error.technical"]))
        await settle(client)
        state = client.state
        await client.disconnect()
        return state

    assert asyncio.run(scenario()) is ConnectionState.SUBSCRIBED
    assert len(seen) == 1


def test_rebind_switches_to_the_new_pair(broker) -> None:
    live = LiveConnectionRegistry()

    async def scenario():
        client = _client(broker, live_pairs=live)
        await client.connect()
        rebound = await client.rebind(user_id="u1", process_id="p2")
        pairs = (live.is_live(("u1", "p1")), live.is_live(("u1", "p2")))
        await client.disconnect()
        return rebound, pairs, client.key

    rebound, pairs, key = asyncio.run(scenario())

    assert rebound is True
    assert pairs == (False, True)
    assert key == ("u1", "p2")
    assert broker.urls[-1].endswith("userId=u1&processId=p2")
    assert broker.sockets[0].closed is True


def test_async_context_manager_connects_and_disconnects(broker) -> None:
    async def scenario():
        async with _client(broker) as client:
            inside = client.is_subscribed
        return inside, client.state

    inside, state = asyncio.run(scenario())

    assert inside is True
    assert state is ConnectionState.DISCONNECTED


def test_cancelled_handshake_releases_pair_and_socket(broker) -> None:
    broker.handshake_reply = None
    live = LiveConnectionRegistry()

    async def scenario():
        client = _client(broker, live_pairs=live)
        pending = asyncio.create_task(client.connect())
        await asyncio.sleep(0.01)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        after_cancel = (client.state, len(live))
        broker.handshake_reply = CONNECTED_FRAME
        again = await client.connect()
        await client.disconnect()
        return after_cancel, again

    after_cancel, again = asyncio.run(scenario())

    assert after_cancel == (ConnectionState.DISCONNECTED, 0)
    assert again is True
    assert broker.sockets[0].closed is True
    assert len(broker.urls) == 2


def test_cancelled_connect_before_socket_opens_ends_disconnected() -> None:
    async def hanging_factory(url: str):
        await asyncio.Event().wait()

    async def scenario():
        client = StompEventClient(
            user_id="u1",
            process_id="p1",
            sink=EventHandlerRegistry(),
            config=CONFIG,
            connect_factory=hanging_factory,
        )
        pending = asyncio.create_task(client.connect())
        await asyncio.sleep(0.01)
        pending.cancel()
        await asyncio.gather(pending, return_exceptions=True)
        return client.state

    assert asyncio.run(scenario()) is ConnectionState.DISCONNECTED


class _ExplodingSink:
    async def process(self, raw_event):
        raise RuntimeError("sink exploded")


def test_sink_exception_is_logged_when_dispatch_finishes(broker, samples, caplog) -> None:
    caplog.set_level(logging.ERROR, logger="tarot_events.transport.stomp_client")

    async def scenario():
        client = _client(broker, sink=_ExplodingSink())
        await client.connect()
        broker.last.push(message_frame(samples["error.business"]))
        await settle()
        state = client.state
        await client.disconnect()
        return state

    assert asyncio.run(scenario()) is ConnectionState.SUBSCRIBED
    failures = [record for record in caplog.records if "stomp.dispatch_failed" in record.getMessage()]
    assert len(failures) == 1
    assert "sink exploded" in failures[0].getMessage()
