from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List

from .errors import Result, StorageError
from .messages import MessageFilter, MessageStore
from .models import DirectMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conversation:
    counterparty_id: str
    last_message: DirectMessage
    unread_count: int = 0


def _recency(message: DirectMessage):
    return (message.created_at, message.id)


def aggregate_conversations(messages: Iterable[DirectMessage], viewer_id: str) -> List[Conversation]:
    """Group ``viewer_id``'s messages into one summary per counterparty, newest first."""
    latest: Dict[str, DirectMessage] = {}
    unread: Dict[str, int] = {}
    for message in messages:
        if not message.involves(viewer_id):
            continue
        counterparty = message.counterparty_of(viewer_id)
        current = latest.get(counterparty)
        if current is None or _recency(message) > _recency(current):
            latest[counterparty] = message
        unread.setdefault(counterparty, 0)
        if message.receiver_id == viewer_id and not message.is_read:
            unread[counterparty] += 1

    conversations = [
        Conversation(counterparty_id=counterparty, last_message=message, unread_count=unread[counterparty])
        for counterparty, message in latest.items()
    ]
    conversations.sort(key=lambda c: c.counterparty_id)
    conversations.sort(key=lambda c: c.last_message.created_at, reverse=True)
    return conversations


def unread_total(conversations: Iterable[Conversation]) -> int:
    return sum(conversation.unread_count for conversation in conversations)


def get_conversations(store: MessageStore, viewer_id: str) -> Result[List[Conversation]]:
    try:
        messages = store.query(MessageFilter(participant_id=viewer_id))
    except StorageError as exc:
        logger.error("Could not load conversations for %s: %s", viewer_id, exc)
        return Result.failure(exc)
    return Result.success(aggregate_conversations(messages, viewer_id))


__all__ = ["Conversation", "aggregate_conversations", "get_conversations", "unread_total"]
