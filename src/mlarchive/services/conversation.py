from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

from mlarchive.services.message_parser import Message

logger = logging.getLogger(__name__)

MISSING_PARENT = "missing_parent"
UNRESOLVED_CONVERSATION = "unresolved_conversation"


@dataclass(frozen=True)
class UnresolvableReply:
    """A reply that could not be attached to any conversation."""

    message_id: str
    in_reply_to: str
    reason: str


DiagnosticsSink = Callable[[UnresolvableReply], None]


def log_unresolvable_reply(event: UnresolvableReply) -> None:
    if event.reason == MISSING_PARENT:
        summary = "Can't find parent message - discarding reply"
    else:
        summary = "Can't find conversation for parent message - discarding reply"
    logger.info(
        summary,
        extra={
            "event": "mbox_reply_discarded",
            "message_id": event.message_id,
            "in_reply_to": event.in_reply_to,
            "reason": event.reason,
        },
    )


class Conversation:
    """A reply tree rooted at a message without an In-Reply-To header.

    Replies are kept in the order they were attached. Trees are only
    grown by ``build_conversations``; callers treat them as read-only.
    """

    def __init__(self, first: Message) -> None:
        self.first = first
        self._replies: dict[str, list[Message]] = {first.id: []}
        self._parents: dict[str, Message] = {}

    def add_reply(self, parent: Message, reply: Message) -> None:
        self._replies[parent.id].append(reply)
        self._replies[reply.id] = []
        self._parents[reply.id] = parent

    def replies(self, message: Message) -> tuple[Message, ...]:
        return tuple(self._replies.get(message.id, ()))

    def parent(self, message: Message) -> Optional[Message]:
        return self._parents.get(message.id)

    def all_messages(self) -> list[Message]:
        ordered: list[Message] = []
        stack = [self.first]
        while stack:
            message = stack.pop()
            ordered.append(message)
            stack.extend(reversed(self._replies[message.id]))
        return ordered

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._replies

    def __len__(self) -> int:
        return len(self._replies)

    def __repr__(self) -> str:
        return f"Conversation(first={self.first.id!r}, messages={len(self)})"


def _index_messages(messages: Iterable[Message]) -> dict[str, Message]:
    id_to_message: dict[str, Message] = {}
    for message in messages:
        id_to_message.setdefault(message.id, message)
    return id_to_message


def _attach(
    message: Message,
    id_to_message: dict[str, Message],
    id_to_conversation: dict[str, Conversation],
) -> Optional[UnresolvableReply]:
    parent_id = message.in_reply_to
    if parent_id not in id_to_message:
        return UnresolvableReply(message.id, parent_id, MISSING_PARENT)
    conversation = id_to_conversation.get(parent_id)
    if conversation is None:
        return UnresolvableReply(message.id, parent_id, UNRESOLVED_CONVERSATION)
    conversation.add_reply(id_to_message[parent_id], message)
    id_to_conversation[message.id] = conversation
    return None


def build_conversations(
    messages: list[Message],
    *,
    diagnostics: DiagnosticsSink | None = None,
    resolve_out_of_order: bool = False,
) -> list[Conversation]:
    """Link messages into reply trees.

    The first message seen for an id wins; later duplicates are ignored.
    Replies whose parent is missing, or whose parent has not been placed in a
    conversation yet, are dropped and reported to ``diagnostics``. With
    ``resolve_out_of_order`` the dropped replies are retried until a pass
    attaches nothing, so a reply that precedes its parent still lands in the
    tree.
    """
    report = diagnostics or log_unresolvable_reply
    id_to_message = _index_messages(messages)
    id_to_conversation: dict[str, Conversation] = {}
    for message in id_to_message.values():
        if message.in_reply_to is None:
            id_to_conversation[message.id] = Conversation(message)

    pending = [
        message
        for message in messages
        if message.in_reply_to is not None and id_to_message[message.id] is message
    ]
    while True:
        unresolved: list[tuple[Message, UnresolvableReply]] = []
        for message in pending:
            failure = _attach(message, id_to_message, id_to_conversation)
            if failure is not None:
                unresolved.append((message, failure))
        if not resolve_out_of_order or not unresolved or len(unresolved) == len(pending):
            break
        pending = [message for message, _ in unresolved]

    for _, failure in unresolved:
        report(failure)

    return list(dict.fromkeys(id_to_conversation.values()))


def conversation_to_dict(conversation: Conversation) -> dict[str, Any]:
    def _node(message: Message) -> dict[str, Any]:
        return {
            "id": message.id,
            "subject": message.subject,
            "author": str(message.author),
            "date": message.date.isoformat(),
            "replies": [_node(reply) for reply in conversation.replies(message)],
        }

    return _node(conversation.first)
