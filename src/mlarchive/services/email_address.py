import re
from dataclasses import dataclass
from email.utils import formataddr, quote
from typing import Optional

DECORATED_ADDRESS_RE = re.compile(r'^"?(?P<name>.*?)"?\s*<(?P<address>[^<>]*)>$')
OBFUSCATED_ADDRESS_RE = re.compile(r"^(?P<local>\S+) at (?P<domain>\S+?)(?: \((?P<name>.*)\))?$")
BRACKETED_RE = re.compile(r"^<(?P<address>[^<>]*)>$")
NAME_SPECIALS_RE = re.compile(r'[][\\()<>@,:;".]')


@dataclass(frozen=True)
class EmailAddress:
    full_name: Optional[str]
    address: str

    @classmethod
    def parse(cls, value: str) -> "EmailAddress":
        """Parse a header address or message id.

        Accepts ``Name <local@domain>``, ``<token>``, the archive's obfuscated
        ``local at domain (Name)`` form and bare tokens such as ``1``.
        """
        text = (value or "").strip()

        bracketed = BRACKETED_RE.match(text)
        if bracketed:
            return cls(None, bracketed.group("address").strip())

        decorated = DECORATED_ADDRESS_RE.match(text)
        if decorated:
            name = decorated.group("name").strip()
            return cls(name or None, decorated.group("address").strip())

        obfuscated = OBFUSCATED_ADDRESS_RE.match(text)
        if obfuscated:
            address = f"{obfuscated.group('local')}@{obfuscated.group('domain')}"
            return cls(obfuscated.group("name") or None, address)

        return cls(None, text)

    @property
    def local_part(self) -> str:
        return self.address.split("@", 1)[0]

    @property
    def domain(self) -> str:
        if "@" not in self.address:
            return ""
        return self.address.split("@", 1)[1]

    def to_obfuscated_string(self) -> str:
        if self.domain:
            rendered = f"{self.local_part} at {self.domain}"
        else:
            rendered = self.address
        if self.full_name:
            return f"{rendered} ({self.full_name})"
        return rendered

    def __str__(self) -> str:
        if not self.full_name:
            return f"<{self.address}>"
        if self.full_name.isascii():
            return formataddr((self.full_name, self.address))
        # formataddr would RFC 2047-encode the name; the archive encodes non-ASCII itself.
        name = self.full_name
        if NAME_SPECIALS_RE.search(name):
            name = f'"{quote(name)}"'
        return f"{name} <{self.address}>"
