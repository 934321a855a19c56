import base64
import binascii
import re

FROM_LINE_ENCODE_PATTERN = re.compile(r"^(>*From )", re.MULTILINE)
FROM_LINE_DECODE_PATTERN = re.compile(r"^>(>*From )", re.MULTILINE)
NON_ASCII_RUN_PATTERN = re.compile(r"[^\x00-\x7f]+")
ENCODED_WORD_PATTERN = re.compile(r"=\?utf-8\?b\?(.*?)\?=")


class CodecError(ValueError):
    """An encoded word could not be turned back into text."""


def encode_from_lines(body: str) -> str:
    """Prefix every line that starts with ``>*From `` with one more ``>``."""
    return FROM_LINE_ENCODE_PATTERN.sub(r">\1", body)


def decode_from_lines(body: str) -> str:
    """Strip exactly one leading ``>`` from every line matching ``>+From ``."""
    return FROM_LINE_DECODE_PATTERN.sub(r"\1", body)


def _encoded_word(match: re.Match) -> str:
    payload = base64.b64encode(match.group(0).encode("utf-8")).decode("ascii")
    return f"=?utf-8?b?{payload}?="


def encode_quoted_printable(text: str) -> str:
    return NON_ASCII_RUN_PATTERN.sub(_encoded_word, text)


def _decoded_word(match: re.Match) -> str:
    payload = match.group(1)
    try:
        raw = base64.b64decode(payload, validate=True)
    except binascii.Error as exc:
        raise CodecError(f"invalid base64 in encoded word: {match.group(0)!r}") from exc
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CodecError(f"encoded word is not valid UTF-8: {match.group(0)!r}") from exc


def decode_quoted_printable(text: str) -> str:
    # Only the utf-8/base64 encoded-word form is understood; anything else passes through.
    return ENCODED_WORD_PATTERN.sub(_decoded_word, text)
