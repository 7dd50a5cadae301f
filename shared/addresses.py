"""
Ethereum address helpers.

Addresses are compared and stored in lowercase hex. Mixed-case input must
carry a valid EIP-55 checksum; all-lowercase or all-uppercase input is
accepted as-is.
"""

import re

from eth_utils import is_checksum_address

ZERO_ADDRESS = "0x" + "0" * 40

_HEX_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


class InvalidAddressError(ValueError):
    """Raised for strings that are not acceptable Ethereum addresses."""


def is_mixed_case(address: str) -> bool:
    body = address[2:]
    return body != body.lower() and body != body.upper()


def normalize_address(address: str) -> str:
    """Validate ``address`` and return its canonical lowercase form."""
    if not isinstance(address, str) or not _HEX_ADDRESS.match(address):
        raise InvalidAddressError(f"not a 20-byte hex address: {address!r}")
    if is_mixed_case(address) and not is_checksum_address(address):
        raise InvalidAddressError(f"bad EIP-55 checksum: {address}")
    return address.lower()