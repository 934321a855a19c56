from __future__ import annotations

import logging
from datetime import timezone
from email.utils import format_datetime
from typing import Callable, Iterator

from mlarchive.services.conversation import Conversation, DiagnosticsSink, build_conversations
from mlarchive.services.mbox_codec import (
    decode_from_lines,
    decode_quoted_printable,
    encode_from_lines,
    encode_quoted_printable,
)
from mlarchive.services.message_parser import CTIME_FORMAT, Message, parse_message

logger = logging.getLogger(__name__)

BOUNDARY_PREFIX = "From "


def _lines(text: str) -> Iterator[str]:
    start = 0
    while start < len(text):
        end = text.find("\n", start)
        if end == -1:
            yield text[start:]
            return
        yield text[start : end + 1]
        start = end + 1


def _is_blank(line: str) -> bool:
    return line.rstrip("\r\n") == ""


def split_mbox(mbox: str) -> Iterator[str]:
    """Yield the raw, still escaped text of each message in ``mbox``.

    A message starts at a ``From `` line that follows an empty line (or opens
    the archive) and runs up to the empty line before the next such boundary.
    Escaped ``>From `` lines never start a message.
    """
    segment: list[str] | None = None
    previous_blank = True
    for line in _lines(mbox):
        if previous_blank and line.startswith(BOUNDARY_PREFIX):
            if segment:
                # The last line collected is the blank separator.
                yield "".join(segment[:-1])
            segment = []
        if segment is not None:
            segment.append(line)
        previous_blank = _is_blank(line)
    if segment:
        yield "".join(segment)


def decode_segment(segment: str) -> str:
    return decode_quoted_printable(decode_from_lines(segment))


def parse_archive(
    mbox: str,
    *,
    parser: Callable[[str], Message] = parse_message,
    diagnostics: DiagnosticsSink | None = None,
    resolve_out_of_order: bool = False,
) -> list[Conversation]:
    """Rebuild the conversations contained in an mbox archive.

    ``MalformedMessageError`` and ``CodecError`` propagate and fail the whole
    archive. Replies that cannot be placed are reported to ``diagnostics``.
    """
    messages = [parser(decode_segment(segment)) for segment in split_mbox(mbox)]
    conversations = build_conversations(
        messages,
        diagnostics=diagnostics,
        resolve_out_of_order=resolve_out_of_order,
    )
    logger.debug(
        "Parsed mbox archive",
        extra={
            "event": "mbox_archive_parsed",
            "message_count": len(messages),
            "conversation_count": len(conversations),
        },
    )
    return conversations


def _single_line(text: str) -> str:
    if "\n" in text or "\r" in text:
        raise ValueError(f"header line must not contain line breaks: {text!r}")
    return text


def format_message(message: Message) -> str:
    """Render ``message`` as an mbox fragment that can be appended to an archive.

    Raises ``ValueError`` when a header field contains a line break.
    """
    envelope_date = message.date.astimezone(timezone.utc)
    headers = [
        f"From {message.sender.address}  {envelope_date.strftime(CTIME_FORMAT)}",
        f"From: {message.author.to_obfuscated_string()}",
    ]
    if message.author.address != message.sender.address:
        headers.append(f"Sender: {message.sender.to_obfuscated_string()}")
    if message.recipients:
        headers.append("To: " + ", ".join(str(recipient) for recipient in message.recipients))
    headers.append(f"Date: {format_datetime(message.date)}")
    headers.append(f"Subject: {message.subject}")
    headers.append(f"Message-Id: <{message.id}>")
    headers.extend(f"{name}: {value}" for name, value in message.headers)

    lines = [""] + [_single_line(header) for header in headers]
    lines.append("")
    lines.append(encode_from_lines(message.body))

    return encode_quoted_printable("\n".join(lines) + "\n")
