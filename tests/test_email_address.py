from mlarchive.services.email_address import EmailAddress


def test_parse_decorated_address() -> None:
    address = EmailAddress.parse("Duke <duke@openjdk.org>")
    assert address == EmailAddress("Duke", "duke@openjdk.org")


def test_parse_quoted_name() -> None:
    address = EmailAddress.parse('"Duke, the mascot" <duke@openjdk.org>')
    assert address.full_name == "Duke, the mascot"
    assert address.address == "duke@openjdk.org"


def test_parse_bracketed_message_id() -> None:
    assert EmailAddress.parse("<abc.123@mail.example.org>") == EmailAddress(None, "abc.123@mail.example.org")


def test_parse_bare_token() -> None:
    assert EmailAddress.parse("1") == EmailAddress(None, "1")
    assert EmailAddress.parse(" a@x.org ") == EmailAddress(None, "a@x.org")


def test_obfuscated_round_trip() -> None:
    address = EmailAddress("Duke", "duke@openjdk.org")
    rendered = address.to_obfuscated_string()
    assert rendered == "duke at openjdk.org (Duke)"
    assert EmailAddress.parse(rendered) == address


def test_obfuscated_without_name() -> None:
    address = EmailAddress(None, "bot@openjdk.org")
    assert address.to_obfuscated_string() == "bot at openjdk.org"
    assert EmailAddress.parse("bot at openjdk.org") == address


def test_str_rendering() -> None:
    assert str(EmailAddress("Duke", "duke@openjdk.org")) == "Duke <duke@openjdk.org>"
    assert str(EmailAddress(None, "list@openjdk.org")) == "<list@openjdk.org>"


def test_local_part_and_domain() -> None:
    address = EmailAddress(None, "duke@openjdk.org")
    assert address.local_part == "duke"
    assert address.domain == "openjdk.org"
    assert EmailAddress(None, "1").domain == ""


def test_str_quotes_names_with_specials() -> None:
    assert str(EmailAddress("Doe, John", "j@x.org")) == '"Doe, John" <j@x.org>'
    assert str(EmailAddress("Åsa, Dev", "asa@x.org")) == '"Åsa, Dev" <asa@x.org>'
    assert str(EmailAddress("Åsa", "asa@x.org")) == "Åsa <asa@x.org>"
