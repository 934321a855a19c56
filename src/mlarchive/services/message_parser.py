from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime
from typing import Optional

from mlarchive.services.email_address import EmailAddress

HEADER_RE = re.compile(r"^(?P<name>[-\w]+): ?(?P<value>.*)$")
ENVELOPE_RE = re.compile(r"^From (?P<sender>\S+)\s+(?P<timestamp>.*)$")

CTIME_FORMAT = "%a %b %d %H:%M:%S %Y"
WELL_KNOWN_HEADERS = {"from", "sender", "to", "date", "subject", "message-id"}


class MalformedMessageError(ValueError):
    """A raw mbox segment could not be turned into a Message."""


@dataclass(frozen=True)
class Message:
    id: str
    author: EmailAddress
    sender: EmailAddress
    date: datetime
    subject: str = ""
    body: str = ""
    recipients: tuple[EmailAddress, ...] = ()
    headers: tuple[tuple[str, str], ...] = ()

    def header_value(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for header, value in self.headers:
            if header.lower() == wanted:
                return value
        return None

    def has_header(self, name: str) -> bool:
        return self.header_value(name) is not None

    @property
    def in_reply_to(self) -> Optional[str]:
        value = self.header_value("In-Reply-To")
        if value is None:
            return None
        return EmailAddress.parse(value).address


def _parse_ctime(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.strptime(value.strip(), CTIME_FORMAT)
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc)


def _parse_date(value: str) -> datetime:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError) as exc:
        raise MalformedMessageError(f"unparseable Date header: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _split_headers(block: list[str]) -> list[tuple[str, str]]:
    headers: list[tuple[str, str]] = []
    for line in block:
        if line[:1] in (" ", "\t") and headers:
            name, value = headers[-1]
            headers[-1] = (name, value + line)
            continue
        match = HEADER_RE.match(line)
        if match:
            headers.append((match.group("name"), match.group("value")))
    return headers


def parse_message(raw: str) -> Message:
    """Parse one decoded mbox segment.

    The envelope ``From `` line is optional. The body keeps everything after
    the first empty line, line terminators included, except the single
    trailing line break that ``format_message`` appends.
    """
    lines = raw.split("\n")
    while lines and lines[0].rstrip("\r") == "":
        lines.pop(0)

    envelope = None
    if lines and lines[0].startswith("From "):
        envelope = ENVELOPE_RE.match(lines.pop(0).rstrip("\r"))

    separator = next((index for index, line in enumerate(lines) if line.rstrip("\r") == ""), len(lines))
    header_block = [line.rstrip("\r") for line in lines[:separator]]
    body_lines = lines[separator + 1 :]

    headers = _split_headers(header_block)
    if not headers:
        raise MalformedMessageError("message has no header block")

    known: dict[str, str] = {}
    extra: list[tuple[str, str]] = []
    for name, value in headers:
        key = name.lower()
        if key in WELL_KNOWN_HEADERS:
            known.setdefault(key, value)
        else:
            extra.append((name, value))

    if not known.get("message-id", "").strip():
        raise MalformedMessageError("message has no Message-Id header")
    message_id = EmailAddress.parse(known["message-id"]).address

    if "date" in known:
        date = _parse_date(known["date"])
    else:
        date = _parse_ctime(envelope.group("timestamp")) if envelope else None
        if date is None:
            raise MalformedMessageError(f"message {message_id} has no usable date")

    if "from" in known:
        author = EmailAddress.parse(known["from"])
    elif envelope:
        author = EmailAddress(None, envelope.group("sender"))
    else:
        raise MalformedMessageError(f"message {message_id} has no author")
    sender = EmailAddress.parse(known["sender"]) if "sender" in known else author

    recipients: tuple[EmailAddress, ...] = ()
    if known.get("to", "").strip():
        recipients = tuple(
            EmailAddress(name or None, address) for name, address in getaddresses([known["to"]]) if address
        )

    body = "\n".join(body_lines)
    if body.endswith("\r\n"):
        body = body[:-2]
    elif body.endswith("\n"):
        body = body[:-1]

    return Message(
        id=message_id,
        author=author,
        sender=sender,
        date=date,
        subject=known.get("subject", ""),
        body=body,
        recipients=recipients,
        headers=tuple(extra),
    )
