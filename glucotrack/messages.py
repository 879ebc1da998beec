from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

import pandas as pd
import requests

from .backend_client import BackendClient, or_equals
from .config import MESSAGES_TABLE
from .errors import StorageError
from .models import DirectMessage
from .realtime import ChangeEvent, LocalRealtimeHub

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMessage:
    sender_id: str
    receiver_id: str
    body: str


@dataclass(frozen=True)
class MessageFilter:
    """Message query; all given criteria must hold."""

    participant_id: Optional[str] = None
    between: Optional[Tuple[str, str]] = None
    unread_for: Optional[str] = None

    def matches(self, message: DirectMessage) -> bool:
        if self.participant_id is not None and not message.involves(self.participant_id):
            return False
        if self.between is not None:
            first, second = self.between
            if {message.sender_id, message.receiver_id} != {first, second}:
                return False
        if self.unread_for is not None and (message.receiver_id != self.unread_for or message.is_read):
            return False
        return True


class MessageStore(Protocol):
    def insert(self, message: OutgoingMessage) -> DirectMessage: ...

    def update_read_flag(self, ids: Sequence[str], receiver_id: str) -> None: ...

    def query(self, message_filter: MessageFilter) -> List[DirectMessage]: ...


class RestMessageStore:
    """Message table access through the backend HTTP API."""

    def __init__(self, client: BackendClient, table: str = MESSAGES_TABLE) -> None:
        self._client = client
        self._table = table

    def insert(self, message: OutgoingMessage) -> DirectMessage:
        row = {
            "sender_id": message.sender_id,
            "receiver_id": message.receiver_id,
            "message": message.body,
            "is_read": False,
        }
        try:
            return DirectMessage.from_row(self._client.insert(self._table, row))
        except (requests.RequestException, ValueError, KeyError) as exc:
            raise StorageError(f"Could not send message: {exc}") from exc

    def update_read_flag(self, ids: Sequence[str], receiver_id: str) -> None:
        if not ids:
            return
        filters = {"id": {"in": list(ids)}, "receiver_id": receiver_id, "is_read": False}
        try:
            self._client.update(self._table, {"is_read": True}, filters)
        except requests.RequestException as exc:
            raise StorageError(f"Could not mark messages read: {exc}") from exc

    def query(self, message_filter: MessageFilter) -> List[DirectMessage]:
        filters: Dict[str, object] = {}
        clauses = []
        if message_filter.participant_id is not None:
            clauses.append([("sender_id", message_filter.participant_id)])
            clauses.append([("receiver_id", message_filter.participant_id)])
        if message_filter.between is not None:
            first, second = message_filter.between
            clauses = [
                [("sender_id", first), ("receiver_id", second)],
                [("sender_id", second), ("receiver_id", first)],
            ]
        if message_filter.unread_for is not None:
            filters["receiver_id"] = message_filter.unread_for
            filters["is_read"] = False
        try:
            rows = self._client.select(
                self._table,
                filters=filters,
                or_filter=or_equals(*clauses) if clauses else None,
                order="created_at.asc",
            )
        except requests.RequestException as exc:
            raise StorageError(f"Could not load messages: {exc}") from exc

        messages = []
        for row in rows:
            try:
                messages.append(DirectMessage.from_row(row))
            except (KeyError, ValueError) as exc:
                logger.warning("Skipping invalid message row %r: %s", row.get("id"), exc)
        # `between` replaces `participant` clauses, so re-check the full filter locally.
        return [message for message in messages if message_filter.matches(message)]


class RelayingMessageStore:
    """Wraps a store and echoes the changes it makes to a local realtime hub.

    Lets sessions served by this process see each other's writes when the
    backing store has no push channel of its own.
    """

    def __init__(self, store: MessageStore, hub: LocalRealtimeHub, table: str = MESSAGES_TABLE) -> None:
        self._store = store
        self._hub = hub
        self._table = table

    def insert(self, message: OutgoingMessage) -> DirectMessage:
        stored = self._store.insert(message)
        self._hub.publish(self._table, ChangeEvent.INSERT, stored.to_row())
        return stored

    def update_read_flag(self, ids: Sequence[str], receiver_id: str) -> None:
        # Read-state updates go only to the reader, whose session already applied them.
        self._store.update_read_flag(ids, receiver_id)

    def query(self, message_filter: MessageFilter) -> List[DirectMessage]:
        return self._store.query(message_filter)


class InMemoryMessageStore:
    """Thread-safe message table that publishes its changes to a realtime hub."""

    def __init__(
        self,
        hub: Optional[LocalRealtimeHub] = None,
        table: str = MESSAGES_TABLE,
        clock: Optional[Callable[[], pd.Timestamp]] = None,
    ) -> None:
        self._hub = hub
        self._table = table
        self._clock = clock or (lambda: pd.Timestamp.now(tz="UTC"))
        self._rows: Dict[str, DirectMessage] = {}
        self._lock = threading.Lock()

    def insert(self, message: OutgoingMessage) -> DirectMessage:
        stored = DirectMessage(
            id=str(uuid.uuid4()),
            sender_id=message.sender_id,
            receiver_id=message.receiver_id,
            body=message.body,
            created_at=self._clock(),
        )
        with self._lock:
            self._rows[stored.id] = stored
        self._publish(ChangeEvent.INSERT, stored)
        return stored

    def add(self, message: DirectMessage) -> None:
        """Seed an existing message without publishing it."""
        with self._lock:
            self._rows[message.id] = message

    def update_read_flag(self, ids: Sequence[str], receiver_id: str) -> None:
        """Mark messages addressed to ``receiver_id`` read; other ids are left alone."""
        changed = []
        with self._lock:
            for message_id in ids:
                current = self._rows.get(message_id)
                if current is None or current.is_read or current.receiver_id != receiver_id:
                    continue
                updated = replace(current, is_read=True)
                self._rows[message_id] = updated
                changed.append(updated)
        for message in changed:
            self._publish(ChangeEvent.UPDATE, message)

    def query(self, message_filter: MessageFilter) -> List[DirectMessage]:
        with self._lock:
            rows = list(self._rows.values())
        matching = [message for message in rows if message_filter.matches(message)]
        return sorted(matching, key=lambda message: (message.created_at, message.id))

    def _publish(self, event: ChangeEvent, message: DirectMessage) -> None:
        if self._hub is not None:
            self._hub.publish(self._table, event, message.to_row())


__all__ = [
    "InMemoryMessageStore",
    "MessageFilter",
    "MessageStore",
    "OutgoingMessage",
    "RelayingMessageStore",
    "RestMessageStore",
]
