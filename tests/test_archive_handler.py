from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from mlarchive.handlers.archive_handler import (
    InvalidMessagePayload,
    handle_append_message,
    handle_list_conversations,
    handle_parse_archive,
    message_from_payload,
)
from mlarchive.services.archive_store import ArchiveStore
from mlarchive.services.email_address import EmailAddress
from mlarchive.services.message_parser import MalformedMessageError

ARCHIVE = (
    "\n"
    "From b@x.org  Tue Jan 02 00:00:00 2024\n"
    "From: B <b@x.org>\n"
    "Message-Id: 10\n"
    "\n"
    "Later thread\n"
    "\n"
    "From a@x.org  Mon Jan 01 00:00:00 2024\n"
    "From: A <a@x.org>\n"
    "Message-Id: 1\n"
    "\n"
    "Hello\n"
    "\n"
    "From c@x.org  Mon Jan 01 00:01:00 2024\n"
    "From: C <c@x.org>\n"
    "Message-Id: 2\n"
    "In-Reply-To: 1\n"
    "\n"
    "Reply\n"
    "\n"
    "From d@x.org  Mon Jan 01 00:02:00 2024\n"
    "From: D <d@x.org>\n"
    "Message-Id: 3\n"
    "In-Reply-To: 404\n"
    "\n"
    "Lost\n"
)


def _store(tmp_path: Path) -> ArchiveStore:
    store = ArchiveStore(tmp_path / "archive.mbox", tmp_path / "archive.db")
    store.init_db()
    return store


def test_handle_parse_archive_orders_by_root_date() -> None:
    result = handle_parse_archive(ARCHIVE)

    assert [conversation["id"] for conversation in result["conversations"]] == ["1", "10"]
    assert [reply["id"] for reply in result["conversations"][0]["replies"]] == ["2"]
    assert result["discarded"] == [{"message_id": "3", "in_reply_to": "404", "reason": "missing_parent"}]


def test_handle_parse_archive_propagates_malformed_messages() -> None:
    with pytest.raises(MalformedMessageError):
        handle_parse_archive("\nFrom a@x.org  Mon Jan 01 00:00:00 2024\nFrom: A <a@x.org>\n\nno id\n")


def test_message_from_payload() -> None:
    message = message_from_payload(
        {
            "id": "<abc@openjdk.org>",
            "author": "Duke <duke@openjdk.org>",
            "sender": "bot@openjdk.org",
            "recipients": ["list@openjdk.org"],
            "date": "2024-01-01T12:00:00+00:00",
            "subject": "RFR",
            "body": "Looks good",
            "in_reply_to": "parent@openjdk.org",
            "headers": {"X-Bot": "mlbridge"},
        }
    )

    assert message.id == "abc@openjdk.org"
    assert message.author == EmailAddress("Duke", "duke@openjdk.org")
    assert message.sender == EmailAddress(None, "bot@openjdk.org")
    assert message.recipients == (EmailAddress(None, "list@openjdk.org"),)
    assert message.date == datetime(2024, 1, 1, 12, tzinfo=timezone.utc)
    assert message.headers == (("In-Reply-To", "<parent@openjdk.org>"), ("X-Bot", "mlbridge"))
    assert message.in_reply_to == "parent@openjdk.org"


@pytest.mark.parametrize(
    "payload",
    [
        {"author": "Duke <duke@openjdk.org>"},
        {"id": "1"},
        {"id": "1", "author": "duke@openjdk.org", "date": "not-a-date"},
        {"id": "1", "author": "duke@openjdk.org", "headers": [["only-a-name"]]},
    ],
)
def test_message_from_payload_rejects_invalid(payload: dict) -> None:
    with pytest.raises(InvalidMessagePayload):
        message_from_payload(payload)


def test_handle_append_message_and_list(tmp_path: Path) -> None:
    store = _store(tmp_path)
    root = {"id": "1", "author": "Duke <duke@openjdk.org>", "subject": "RFR", "body": "From me", "date": "2024-01-01T00:00:00"}
    reply = {"id": "2", "author": "Duke <duke@openjdk.org>", "subject": "Re: RFR", "in_reply_to": "1", "date": "2024-01-01T00:05:00"}

    first = handle_append_message(root, store)
    second = handle_append_message(reply, store)
    again = handle_append_message(root, store)

    assert first["status"] == "archived"
    assert ">From me\n" in first["fragment"]
    assert second["archived"] is True
    assert again["status"] == "duplicate"
    assert again["archived"] is False

    listing = handle_list_conversations(store)
    assert len(listing["conversations"]) == 1
    assert listing["conversations"][0]["replies"][0]["subject"] == "Re: RFR"
    assert listing["discarded"] == []


_FORGED = "Hi\n\nFrom evil@x.org  Mon Jan 01 00:00:00 2024\nMessage-Id: <666>"


@pytest.mark.parametrize(
    "field, value",
    [
        ("subject", _FORGED),
        ("id", "1\r\nX-Injected: yes"),
        ("author", "Duke <duke@openjdk.org>\nBcc: a@x.org"),
        ("sender", "bot@openjdk.org\n"),
        ("recipients", ["list@openjdk.org", "other@openjdk.org\r\nX: y"]),
        ("in_reply_to", "0\n\nFrom evil@x.org"),
        ("headers", {"X-Bot": "mlbridge\nX-Other: forged"}),
        ("headers", [["X-Bot\n", "mlbridge"]]),
        ("headers", [["Not A Name", "value"]]),
    ],
)
def test_message_from_payload_rejects_line_breaks_in_headers(field: str, value) -> None:
    payload = {"id": "1", "author": "Duke <duke@openjdk.org>", "subject": "RFR", field: value}
    with pytest.raises(InvalidMessagePayload):
        message_from_payload(payload)


def test_message_from_payload_allows_multiline_body() -> None:
    message = message_from_payload({"id": "1", "author": "duke@openjdk.org", "body": "line one\n\nFrom line two"})
    assert message.body == "line one\n\nFrom line two"


def test_forged_subject_leaves_archive_readable(tmp_path: Path) -> None:
    store = _store(tmp_path)
    handle_append_message({"id": "1", "author": "Duke <duke@openjdk.org>", "subject": "RFR"}, store)

    with pytest.raises(InvalidMessagePayload):
        handle_append_message({"id": "2", "author": "Duke <duke@openjdk.org>", "subject": _FORGED}, store)

    assert store.count() == 1
    listing = handle_list_conversations(store)
    assert [conversation["id"] for conversation in listing["conversations"]] == ["1"]
