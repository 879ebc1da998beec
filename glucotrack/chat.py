"""Realtime direct-message session between a viewer and one counterparty."""

from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .config import MARK_READ_ON_DELIVERY, MESSAGES_TABLE, SUBSCRIBE_TIMEOUT
from .errors import Result, StorageError, SubscriptionError, SupersededError
from .messages import MessageFilter, MessageStore, OutgoingMessage
from .models import DirectMessage
from .realtime import ChangeEvent, RealtimeTransport, RowFilter

logger = logging.getLogger(__name__)

MessageListener = Callable[[DirectMessage], None]


class SessionStatus(str, Enum):
    IDLE = "idle"
    SUBSCRIBING = "subscribing"
    SUBSCRIBED = "subscribed"
    FAILED = "failed"
    CLOSED = "closed"


class ChatSession:
    """Keeps one conversation's messages in sync with the message table.

    Messages can reach the session through two realtime triggers (the
    viewer as sender and as receiver) as well as through history loads;
    each message id is kept once. Callbacks from a replaced subscription
    are ignored.
    """

    def __init__(
        self,
        viewer_id: str,
        store: MessageStore,
        transport: RealtimeTransport,
        *,
        table: str = MESSAGES_TABLE,
        mark_read_on_delivery: bool = MARK_READ_ON_DELIVERY,
        subscribe_timeout: float = SUBSCRIBE_TIMEOUT,
    ) -> None:
        self.viewer_id = viewer_id
        self._store = store
        self._transport = transport
        self._table = table
        self.mark_read_on_delivery = mark_read_on_delivery
        self.subscribe_timeout = subscribe_timeout

        self.counterparty_id: Optional[str] = None
        self.status = SessionStatus.IDLE
        self.last_error: Optional[Exception] = None
        self._messages: Dict[str, DirectMessage] = {}
        self._handles: List[Any] = []
        self._generation = 0
        self._on_message: Optional[MessageListener] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def messages(self) -> List[DirectMessage]:
        return sorted(self._messages.values(), key=lambda message: (message.created_at, message.id))

    @property
    def unread_count(self) -> int:
        return sum(1 for message in self._messages.values() if self._is_inbound(message) and not message.is_read)

    # -- subscription lifecycle ------------------------------------------------

    async def subscribe(self, counterparty_id: str, on_message: Optional[MessageListener] = None) -> Result[None]:
        """Start listening for the conversation with ``counterparty_id``.

        Any existing subscription is torn down first. Failures leave the
        session in ``FAILED`` and are returned, not raised.
        """
        if self.status is SessionStatus.CLOSED:
            raise RuntimeError("Chat session is closed.")
        await self.unsubscribe()

        if counterparty_id != self.counterparty_id:
            self._messages.clear()
        self.counterparty_id = counterparty_id
        self._on_message = on_message
        self._generation += 1
        generation = self._generation
        self.status = SessionStatus.SUBSCRIBING
        self.last_error = None

        triggers = (
            (ChangeEvent.INSERT, RowFilter("receiver_id", self.viewer_id)),
            (ChangeEvent.INSERT, RowFilter("sender_id", self.viewer_id)),
            (ChangeEvent.UPDATE, RowFilter("receiver_id", self.viewer_id)),
        )
        callback = functools.partial(self._handle_change, generation)
        handles: List[Any] = []
        try:
            for event, row_filter in triggers:
                handle = await asyncio.wait_for(
                    self._transport.subscribe(self._table, event, row_filter, callback),
                    timeout=self.subscribe_timeout,
                )
                handles.append(handle)
                if generation != self._generation:
                    await self._release(handles)
                    return Result.failure(SupersededError("Subscription replaced while connecting."))
        except Exception as exc:
            await self._release(handles)
            if generation != self._generation:
                return Result.failure(SupersededError("Subscription replaced while connecting."))
            if isinstance(exc, SubscriptionError):
                error = exc
            elif isinstance(exc, asyncio.TimeoutError):
                error = SubscriptionError(f"Subscribing to {self._table} timed out after {self.subscribe_timeout}s.")
                error.__cause__ = exc
            else:
                error = SubscriptionError(f"Subscribing to {self._table} failed: {exc}")
                error.__cause__ = exc
            self.status = SessionStatus.FAILED
            self.last_error = error
            logger.error("Realtime subscription for %s failed: %s", self.viewer_id, error)
            return Result.failure(error)

        self._handles = handles
        self.status = SessionStatus.SUBSCRIBED
        logger.info("Subscribed %s to conversation with %s", self.viewer_id, counterparty_id)
        return Result.success(None)

    async def unsubscribe(self) -> None:
        """Detach from the transport. Safe to call repeatedly."""
        handles, self._handles = self._handles, []
        self._generation += 1
        await self._release(handles)
        if self.status is not SessionStatus.CLOSED:
            self.status = SessionStatus.IDLE

    async def _release(self, handles: Iterable[Any]) -> None:
        for handle in handles:
            try:
                await self._transport.unsubscribe(handle)
            except (SubscriptionError, OSError) as exc:
                logger.warning("Could not release realtime subscription: %s", exc)

    async def open(self, counterparty_id: str, on_message: Optional[MessageListener] = None) -> Result[List[DirectMessage]]:
        """Subscribe, then load history. History is loaded even if subscribing fails."""
        subscribed = await self.subscribe(counterparty_id, on_message)
        history = await self.load_history()
        if not subscribed.ok:
            return Result.failure(subscribed.error)
        return history

    async def close(self) -> None:
        await self.unsubscribe()
        self.status = SessionStatus.CLOSED
        await self.flush_receipts()

    # -- inbound events ----------------------------------------------------------

    def _handle_change(self, generation: int, event: ChangeEvent, row: Dict[str, Any]) -> None:
        if generation != self._generation:
            logger.debug("Ignoring %s from a replaced subscription", event.value)
            return
        try:
            message = DirectMessage.from_row(row)
        except (KeyError, ValueError) as exc:
            logger.warning("Ignoring malformed realtime row: %s", exc)
            return
        if not self._in_conversation(message):
            return

        if event is ChangeEvent.UPDATE:
            existing = self._messages.get(message.id)
            if existing is not None and existing.is_read != message.is_read:
                self._messages[message.id] = replace(existing, is_read=message.is_read)
            return
        self._deliver(message)

    def _deliver(self, message: DirectMessage) -> bool:
        if message.id in self._messages:
            logger.debug("Duplicate delivery of message %s", message.id)
            return False
        self._messages[message.id] = message
        if self._on_message is not None:
            self._on_message(message)
        if self.mark_read_on_delivery and self._is_inbound(message) and not message.is_read:
            self._schedule_mark_read([message.id])
        return True

    def _in_conversation(self, message: DirectMessage) -> bool:
        if self.counterparty_id is None:
            return False
        return {message.sender_id, message.receiver_id} == {self.viewer_id, self.counterparty_id}

    def _is_inbound(self, message: DirectMessage) -> bool:
        return message.receiver_id == self.viewer_id and message.sender_id == self.counterparty_id

    def _schedule_mark_read(self, ids: List[str]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; read receipt for %s skipped", ids)
            return
        task = loop.create_task(self._mark_read_in_background(ids))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _mark_read_in_background(self, ids: List[str]) -> None:
        result = await self.mark_read(ids)
        if not result.ok:
            logger.warning("Read receipt for %s failed: %s", ids, result.error)

    async def flush_receipts(self) -> None:
        """Wait for read receipts that are still in flight."""
        while self._pending:
            tasks = list(self._pending)
            await asyncio.gather(*tasks, return_exceptions=True)
            self._pending.difference_update(tasks)

    # -- outbound operations -----------------------------------------------------

    async def send(self, body: str) -> Result[DirectMessage]:
        """Store a message for the counterparty.

        The message is not added locally; it arrives through the realtime
        feed like every other message.
        """
        text = body.strip()
        if not text:
            raise ValueError("Message body must not be empty.")
        if self.counterparty_id is None:
            raise RuntimeError("No conversation selected.")
        outgoing = OutgoingMessage(self.viewer_id, self.counterparty_id, text)
        try:
            stored = await asyncio.to_thread(self._store.insert, outgoing)
        except StorageError as exc:
            logger.error("Sending message to %s failed: %s", self.counterparty_id, exc)
            return Result.failure(exc)
        return Result.success(stored)

    async def load_history(self) -> Result[List[DirectMessage]]:
        """Merge the stored conversation into the session and mark inbound messages read."""
        if self.counterparty_id is None:
            raise RuntimeError("No conversation selected.")
        counterparty_id = self.counterparty_id
        generation = self._generation
        try:
            history = await asyncio.to_thread(
                self._store.query, MessageFilter(between=(self.viewer_id, counterparty_id))
            )
        except StorageError as exc:
            logger.error("Loading history with %s failed: %s", counterparty_id, exc)
            return Result.failure(exc)
        if generation != self._generation or counterparty_id != self.counterparty_id:
            return Result.failure(SupersededError("Conversation changed while loading history."))

        for message in history:
            existing = self._messages.get(message.id)
            if existing is None:
                self._messages[message.id] = message
            elif message.is_read and not existing.is_read:
                self._messages[message.id] = replace(existing, is_read=True)

        unread = [message.id for message in self._messages.values() if self._is_inbound(message) and not message.is_read]
        if unread:
            marked = await self.mark_read(unread)
            if not marked.ok:
                logger.warning("Could not mark history read: %s", marked.error)
        return Result.success(self.messages)

    async def mark_read(self, ids: Iterable[str]) -> Result[None]:
        """Mark loaded inbound messages read in storage, then locally; other ids are skipped."""
        targets = [
            message_id
            for message_id in ids
            if message_id in self._messages and self._is_inbound(self._messages[message_id])
        ]
        if not targets:
            return Result.success(None)
        try:
            await asyncio.to_thread(self._store.update_read_flag, targets, self.viewer_id)
        except StorageError as exc:
            return Result.failure(exc)
        for message_id in targets:
            existing = self._messages.get(message_id)
            if existing is not None and not existing.is_read:
                self._messages[message_id] = replace(existing, is_read=True)
        return Result.success(None)


__all__ = ["ChatSession", "MessageListener", "SessionStatus"]
