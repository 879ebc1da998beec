import asyncio
import itertools
import logging

import pandas as pd
import pytest

from glucotrack.chat import ChatSession, SessionStatus
from glucotrack.errors import StorageError, SubscriptionError
from glucotrack.messages import InMemoryMessageStore, MessageFilter, OutgoingMessage
from glucotrack.realtime import ChangeEvent, LocalRealtimeHub

TABLE = "messages"


async def settle() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


def make_clock():
    ticks = itertools.count()
    start = pd.Timestamp("2025-03-12 09:00", tz="UTC")
    return lambda: start + pd.Timedelta(seconds=next(ticks))


@pytest.fixture
def hub():
    return LocalRealtimeHub()


@pytest.fixture
def store(hub):
    return InMemoryMessageStore(hub, table=TABLE, clock=make_clock())


def make_session(store, transport, viewer="alice", **kwargs) -> ChatSession:
    return ChatSession(viewer, store, transport, table=TABLE, **kwargs)


class RecordingTransport:
    """Keeps every callback so tests can fire them by hand, even after unsubscribe."""

    def __init__(self, fail_on=None, delay=0.0):
        self.subscriptions = []
        self.released = []
        self.fail_on = fail_on
        self.delay = delay

    async def subscribe(self, table, event, row_filter, callback):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on is not None and len(self.subscriptions) == self.fail_on:
            raise SubscriptionError("channel rejected")
        handle = (event, row_filter.column, len(self.subscriptions))
        self.subscriptions.append((event, row_filter, callback))
        return handle

    async def unsubscribe(self, handle):
        self.released.append(handle)

    def callback(self, event, column):
        matches = [cb for ev, flt, cb in self.subscriptions if ev is event and flt.column == column]
        return matches[-1]


class DroppingTransport(RecordingTransport):
    """Loses its connection after the first trigger is attached."""

    async def subscribe(self, table, event, row_filter, callback):
        if self.subscriptions:
            raise ConnectionError("socket closed")
        return await super().subscribe(table, event, row_filter, callback)


class FailingReadStore(InMemoryMessageStore):
    def update_read_flag(self, ids, receiver_id):
        raise StorageError("read receipt rejected")


def test_subscribe_attaches_three_triggers() -> None:
    transport = RecordingTransport()
    session = make_session(InMemoryMessageStore(), transport)

    result = asyncio.run(session.subscribe("bob"))

    assert result.ok
    assert session.status is SessionStatus.SUBSCRIBED
    assert [(event, flt.column, flt.value) for event, flt, _ in transport.subscriptions] == [
        (ChangeEvent.INSERT, "receiver_id", "alice"),
        (ChangeEvent.INSERT, "sender_id", "alice"),
        (ChangeEvent.UPDATE, "receiver_id", "alice"),
    ]


def test_same_message_through_both_insert_paths_is_kept_once(message) -> None:
    transport = RecordingTransport()
    session = make_session(InMemoryMessageStore(), transport, mark_read_on_delivery=False)
    delivered = []

    async def scenario():
        await session.subscribe("alice", delivered.append)
        row = message("m1", "alice", "alice", "2025-03-12 09:00").to_row()
        transport.callback(ChangeEvent.INSERT, "receiver_id")(ChangeEvent.INSERT, row)
        transport.callback(ChangeEvent.INSERT, "sender_id")(ChangeEvent.INSERT, row)

    asyncio.run(scenario())

    assert [m.id for m in session.messages] == ["m1"]
    assert [m.id for m in delivered] == ["m1"]


def test_sent_message_arrives_through_echo_only(hub, store) -> None:
    session = make_session(store, hub)

    async def scenario():
        await session.subscribe("bob")
        result = await session.send("  Morning reading was 140  ")
        await settle()
        return result

    result = asyncio.run(scenario())

    assert result.ok
    assert result.value.body == "Morning reading was 140"
    assert [m.body for m in session.messages] == ["Morning reading was 140"]


def test_send_does_not_append_without_subscription(store) -> None:
    session = make_session(store, RecordingTransport())

    async def scenario():
        await session.subscribe("bob")
        await session.send("hello")

    asyncio.run(scenario())

    assert session.messages == []
    assert len(store.query(MessageFilter(between=("alice", "bob")))) == 1


def test_empty_message_is_rejected(store) -> None:
    session = make_session(store, RecordingTransport())

    async def scenario():
        await session.subscribe("bob")
        await session.send("   ")

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_inbound_message_is_marked_read(hub, store) -> None:
    session = make_session(store, hub)

    async def scenario():
        await session.subscribe("bob")
        store.insert(OutgoingMessage("bob", "alice", "How was lunch?"))
        await settle()
        await session.flush_receipts()
        await settle()

    asyncio.run(scenario())

    (stored,) = store.query(MessageFilter(between=("alice", "bob")))
    assert stored.is_read
    assert session.messages[0].is_read
    assert session.unread_count == 0


def test_read_receipts_can_be_disabled(hub, store) -> None:
    session = make_session(store, hub, mark_read_on_delivery=False)

    async def scenario():
        await session.subscribe("bob")
        store.insert(OutgoingMessage("bob", "alice", "How was lunch?"))
        await settle()

    asyncio.run(scenario())

    assert session.unread_count == 1
    assert not store.query(MessageFilter(between=("alice", "bob")))[0].is_read


def test_failed_read_receipt_does_not_block_delivery(hub, caplog) -> None:
    store = FailingReadStore(hub, table=TABLE, clock=make_clock())
    session = make_session(store, hub)
    delivered = []

    async def scenario():
        await session.subscribe("bob", delivered.append)
        store.insert(OutgoingMessage("bob", "alice", "ping"))
        await settle()
        await session.flush_receipts()

    with caplog.at_level(logging.WARNING, logger="glucotrack.chat"):
        asyncio.run(scenario())

    assert [m.body for m in delivered] == ["ping"]
    assert not session.messages[0].is_read
    assert "Read receipt" in caplog.text


def test_update_event_changes_read_state_only(hub, store) -> None:
    session = make_session(store, hub, mark_read_on_delivery=False)
    delivered = []

    async def scenario():
        await session.subscribe("bob", delivered.append)
        sent = store.insert(OutgoingMessage("bob", "alice", "ping"))
        await settle()
        store.update_read_flag([sent.id], "alice")
        await settle()

    asyncio.run(scenario())

    assert len(delivered) == 1
    assert session.messages[0].is_read


def test_other_conversations_are_ignored(hub, store) -> None:
    session = make_session(store, hub, mark_read_on_delivery=False)

    async def scenario():
        await session.subscribe("bob")
        store.insert(OutgoingMessage("carol", "alice", "not for this chat"))
        store.insert(OutgoingMessage("alice", "carol", "nor this"))
        store.insert(OutgoingMessage("bob", "alice", "for this chat"))
        await settle()

    asyncio.run(scenario())

    assert [m.body for m in session.messages] == ["for this chat"]


def test_callbacks_from_replaced_subscription_are_ignored(message) -> None:
    transport = RecordingTransport()
    session = make_session(InMemoryMessageStore(), transport, mark_read_on_delivery=False)

    async def scenario():
        await session.subscribe("bob")
        old_callback = transport.callback(ChangeEvent.INSERT, "receiver_id")
        await session.subscribe("carol")
        old_callback(ChangeEvent.INSERT, message("m1", "bob", "alice", "2025-03-12 09:00").to_row())
        old_callback(ChangeEvent.INSERT, message("m2", "carol", "alice", "2025-03-12 09:01").to_row())
        new_callback = transport.callback(ChangeEvent.INSERT, "receiver_id")
        new_callback(ChangeEvent.INSERT, message("m3", "carol", "alice", "2025-03-12 09:02").to_row())

    asyncio.run(scenario())

    assert [m.id for m in session.messages] == ["m3"]
    assert len(transport.released) == 3


def test_subscription_failure_is_reported(caplog) -> None:
    transport = RecordingTransport(fail_on=1)
    session = make_session(InMemoryMessageStore(), transport)

    with caplog.at_level(logging.ERROR, logger="glucotrack.chat"):
        result = asyncio.run(session.subscribe("bob"))

    assert not result.ok
    assert isinstance(result.error, SubscriptionError)
    assert session.status is SessionStatus.FAILED
    assert len(transport.released) == 1
    assert "subscription" in caplog.text


def test_subscription_timeout_is_reported() -> None:
    session = make_session(InMemoryMessageStore(), RecordingTransport(delay=1.0), subscribe_timeout=0.01)

    result = asyncio.run(session.subscribe("bob"))

    assert isinstance(result.error, SubscriptionError)
    assert session.status is SessionStatus.FAILED


def test_unsubscribe_is_idempotent(hub, store) -> None:
    session = make_session(store, hub)

    async def scenario():
        await session.subscribe("bob")
        assert hub.subscription_count == 3
        await session.unsubscribe()
        await session.unsubscribe()

    asyncio.run(scenario())

    assert hub.subscription_count == 0
    assert session.status is SessionStatus.IDLE


def test_history_is_merged_and_marked_read(hub, store, message) -> None:
    store.add(message("m1", "bob", "alice", "2025-03-12 08:00"))
    store.add(message("m2", "alice", "bob", "2025-03-12 08:05", is_read=False))
    store.add(message("m3", "bob", "alice", "2025-03-12 08:10"))
    store.add(message("m4", "carol", "alice", "2025-03-12 08:15"))
    session = make_session(store, hub)

    async def scenario():
        result = await session.open("bob")
        # A late realtime echo of a message already loaded from history.
        hub.publish(TABLE, ChangeEvent.INSERT, message("m3", "bob", "alice", "2025-03-12 08:10").to_row())
        await settle()
        return result

    result = asyncio.run(scenario())

    assert result.ok
    assert [m.id for m in session.messages] == ["m1", "m2", "m3"]
    assert session.unread_count == 0
    unread = store.query(MessageFilter(unread_for="alice"))
    assert [m.id for m in unread] == ["m4"]
    # Outbound messages are left for bob to read.
    assert not store.query(MessageFilter(unread_for="bob"))[0].is_read


def test_messages_are_sorted_by_time_then_id(message) -> None:
    transport = RecordingTransport()
    session = make_session(InMemoryMessageStore(), transport, mark_read_on_delivery=False)

    async def scenario():
        await session.subscribe("bob")
        deliver = transport.callback(ChangeEvent.INSERT, "receiver_id")
        deliver(ChangeEvent.INSERT, message("b", "bob", "alice", "2025-03-12 09:00").to_row())
        deliver(ChangeEvent.INSERT, message("c", "bob", "alice", "2025-03-12 08:00").to_row())
        deliver(ChangeEvent.INSERT, message("a", "bob", "alice", "2025-03-12 09:00").to_row())

    asyncio.run(scenario())

    assert [m.id for m in session.messages] == ["c", "a", "b"]


def test_close_releases_everything(hub, store) -> None:
    session = make_session(store, hub)

    async def scenario():
        await session.subscribe("bob")
        await session.close()
        with pytest.raises(RuntimeError):
            await session.subscribe("bob")

    asyncio.run(scenario())

    assert session.status is SessionStatus.CLOSED
    assert hub.subscription_count == 0


def test_sender_cannot_mark_outbound_message_read(hub, store, message) -> None:
    store.add(message("m1", "alice", "bob", "2025-03-12 09:00"))
    session = make_session(store, hub)

    async def scenario():
        await session.subscribe("bob")
        outbound = await session.mark_read(["m1"])
        await session.load_history()
        again = await session.mark_read(["m1"])
        return outbound, again

    outbound, again = asyncio.run(scenario())

    assert outbound.ok and again.ok
    assert [m.id for m in store.query(MessageFilter(unread_for="bob"))] == ["m1"]
    assert not session.messages[0].is_read


def test_transport_connection_error_becomes_subscription_failure() -> None:
    transport = DroppingTransport()
    session = make_session(InMemoryMessageStore(), transport)

    result = asyncio.run(session.subscribe("bob"))

    assert not result.ok
    assert isinstance(result.error, SubscriptionError)
    assert isinstance(result.error.__cause__, ConnectionError)
    assert session.status is SessionStatus.FAILED
    assert session.last_error is result.error
    assert len(transport.released) == 1
