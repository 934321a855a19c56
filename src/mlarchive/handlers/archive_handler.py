import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from mlarchive.services.conversation import UnresolvableReply, conversation_to_dict, log_unresolvable_reply
from mlarchive.services.email_address import EmailAddress
from mlarchive.services.mbox import format_message, parse_archive
from mlarchive.services.message_parser import Message

if TYPE_CHECKING:
    from mlarchive.services.archive_store import ArchiveStore


HEADER_NAME_RE = re.compile(r"^[-\w]+$")


class InvalidMessagePayload(ValueError):
    pass


def _single_line(field: str, value: Any) -> str:
    text = str(value)
    if "\n" in text or "\r" in text:
        raise InvalidMessagePayload(f"{field} must not contain line breaks")
    return text


def _conversations_payload(conversations: list, discarded: list[UnresolvableReply]) -> dict[str, Any]:
    ordered = sorted(conversations, key=lambda conversation: conversation.first.date)
    return {
        "conversations": [conversation_to_dict(conversation) for conversation in ordered],
        "discarded": [
            {"message_id": event.message_id, "in_reply_to": event.in_reply_to, "reason": event.reason}
            for event in discarded
        ],
    }


def _collecting_sink(discarded: list[UnresolvableReply]):
    def _sink(event: UnresolvableReply) -> None:
        log_unresolvable_reply(event)
        discarded.append(event)

    return _sink


def handle_parse_archive(raw_text: str, *, resolve_out_of_order: bool = False) -> dict[str, Any]:
    discarded: list[UnresolvableReply] = []
    conversations = parse_archive(
        raw_text,
        diagnostics=_collecting_sink(discarded),
        resolve_out_of_order=resolve_out_of_order,
    )
    return _conversations_payload(conversations, discarded)


def handle_list_conversations(store: "ArchiveStore", *, resolve_out_of_order: bool = False) -> dict[str, Any]:
    discarded: list[UnresolvableReply] = []
    conversations = store.conversations(
        diagnostics=_collecting_sink(discarded),
        resolve_out_of_order=resolve_out_of_order,
    )
    return _conversations_payload(conversations, discarded)


def _parse_date(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc).replace(microsecond=0)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError as exc:
        raise InvalidMessagePayload(f"invalid date {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_headers(value: Any) -> tuple[tuple[str, str], ...]:
    if not value:
        return ()
    items = value.items() if isinstance(value, dict) else value
    headers: list[tuple[str, str]] = []
    for item in items:
        if len(item) != 2:
            raise InvalidMessagePayload(f"invalid header entry {item!r}")
        name, header_value = item
        name = _single_line("header name", name)
        if not HEADER_NAME_RE.match(name):
            raise InvalidMessagePayload(f"invalid header name {name!r}")
        headers.append((name, _single_line(f"header {name}", header_value)))
    return tuple(headers)


def message_from_payload(payload: dict[str, Any]) -> Message:
    """Build a Message from a JSON body.

    ``id`` and ``author`` are required. ``in_reply_to`` is accepted as a
    shortcut for an ``In-Reply-To`` header.
    """
    message_id = _single_line("id", payload.get("id") or "").strip()
    if not message_id:
        raise InvalidMessagePayload("missing message id")
    author_text = _single_line("author", payload.get("author") or "").strip()
    if not author_text:
        raise InvalidMessagePayload("missing author")

    author = EmailAddress.parse(author_text)
    sender = EmailAddress.parse(_single_line("sender", payload["sender"])) if payload.get("sender") else author
    recipients = tuple(
        EmailAddress.parse(_single_line("recipient", recipient)) for recipient in payload.get("recipients") or []
    )

    headers = _parse_headers(payload.get("headers"))
    in_reply_to = _single_line("in_reply_to", payload.get("in_reply_to") or "").strip()
    if in_reply_to and not any(name.lower() == "in-reply-to" for name, _ in headers):
        headers = (("In-Reply-To", f"<{EmailAddress.parse(in_reply_to).address}>"),) + headers

    return Message(
        id=EmailAddress.parse(message_id).address,
        author=author,
        sender=sender,
        date=_parse_date(payload.get("date")),
        subject=_single_line("subject", payload.get("subject") or ""),
        body=str(payload.get("body") or ""),
        recipients=recipients,
        headers=headers,
    )


def handle_append_message(payload: dict[str, Any], store: "ArchiveStore") -> dict[str, Any]:
    message = message_from_payload(payload)
    archived = store.append(message)
    return {
        "status": "archived" if archived else "duplicate",
        "archived": archived,
        "message_id": message.id,
        "fragment": format_message(message),
    }
