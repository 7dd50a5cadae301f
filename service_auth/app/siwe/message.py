"""
EIP-4361 message parsing on top of the ``siwe`` package.

The package insists on an EIP-55 address line. Wallets also sign
single-case addresses, which carry no checksum, so the address line is
checksummed before parsing and the address exactly as signed is kept next
to the parsed fields for the verifier's own checksum check.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from eth_utils import to_checksum_address
from siwe import SiweMessage

from shared.errors import MalformedMessage

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """Parse an RFC 3339 timestamp. A timezone designator is mandatory."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise MalformedMessage(f"Invalid timestamp: {value}")
    if parsed.tzinfo is None:
        raise MalformedMessage(f"Timestamp lacks a timezone: {value}")
    return parsed


def _optional_timestamp(value) -> Optional[datetime]:
    return parse_timestamp(value) if value is not None else None


@dataclass(frozen=True)
class ParsedMessage:
    """A parsed sign-in message plus the values the verifier checks."""
    fields: SiweMessage
    address: str
    issued_at: datetime
    expiration_time: Optional[datetime]
    not_before: Optional[datetime]

    @property
    def domain(self) -> str:
        return self.fields.domain

    @property
    def chain_id(self) -> int:
        return int(self.fields.chain_id)

    @property
    def nonce(self) -> str:
        return self.fields.nonce


def parse_message(text: str) -> ParsedMessage:
    """Parse the plain-text message or raise :class:`MalformedMessage`."""
    if not isinstance(text, str) or not text:
        raise MalformedMessage("Empty message")

    if not text.isascii():
        raise MalformedMessage("Message must be ASCII")

    lines = text.split("\n")
    if len(lines) < 2 or not _HEX_ADDRESS.match(lines[1]):
        raise MalformedMessage("Invalid address line")
    address = lines[1]
    lines[1] = to_checksum_address(address)

    try:
        fields = SiweMessage.from_message("\n".join(lines), abnf=False)
    except ValueError as e:
        raise MalformedMessage(details={"reason": str(e)})

    return ParsedMessage(
        fields=fields,
        address=address,
        issued_at=parse_timestamp(fields.issued_at),
        expiration_time=_optional_timestamp(fields.expiration_time),
        not_before=_optional_timestamp(fields.not_before),
    )
