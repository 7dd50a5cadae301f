"""
ABI helpers for the contract views used by token-gating rules.
"""

from typing import Any, Sequence, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from shared.errors import RPCError


def selector(signature: str) -> str:
    """4-byte selector for a function signature such as ``balanceOf(address)``."""
    return "0x" + function_signature_to_4byte_selector(signature).hex()


BALANCE_OF = selector("balanceOf(address)")  # 0x70a08231
OWNER_OF = selector("ownerOf(uint256)")  # 0x6352211e


def encode_call(method_selector: str, args: Sequence[Tuple[str, Any]] = ()) -> str:
    """Build ``eth_call`` data from a selector and ``(abi_type, value)`` pairs."""
    prefix = method_selector[2:] if method_selector.startswith("0x") else method_selector
    if len(prefix) != 8:
        raise ValueError(f"selector must be 4 bytes: {method_selector}")
    types = [abi_type for abi_type, _ in args]
    values = [value for _, value in args]
    return "0x" + prefix + (encode(types, values).hex() if args else "")


def _decode_single(abi_type: str, data: bytes) -> Any:
    try:
        (value,) = decode([abi_type], data)
    except DecodingError as e:
        raise RPCError(details={"reason": f"cannot decode {abi_type} result", "error": str(e)})
    return value


def decode_uint256(data: bytes) -> int:
    return _decode_single("uint256", data)


def decode_address(data: bytes) -> str:
    return _decode_single("address", data).lower()
