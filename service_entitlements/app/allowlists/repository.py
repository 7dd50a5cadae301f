"""
Allowlist repository.

Storage is behind the :class:`AllowlistRepository` protocol; the in-memory
implementation is loaded from JSON of the form
``{"allowlists": {"vip": ["0x...", "0x..."]}}``.
"""

import json
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Protocol

from shared.addresses import InvalidAddressError, normalize_address
from shared.errors import ConfigurationError
from shared.logging import get_logger


class AllowlistRepository(Protocol):
    """Membership lookups for named allowlists."""

    def has_allowlist(self, allowlist_id: str) -> bool:
        ...

    async def contains(self, allowlist_id: str, address: str) -> bool:
        ...


class InMemoryAllowlistRepository:
    """Allowlists held in process memory, swapped atomically on replace."""

    def __init__(self, allowlists: Optional[Mapping[str, Iterable[str]]] = None):
        self.logger = get_logger("entitlements.allowlists")
        self._lists: Mapping[str, FrozenSet[str]] = MappingProxyType({})
        if allowlists:
            self.replace(allowlists)

    def replace(self, allowlists: Mapping[str, Iterable[str]]) -> None:
        table: Dict[str, FrozenSet[str]] = {}
        for allowlist_id, addresses in allowlists.items():
            try:
                table[allowlist_id] = frozenset(normalize_address(address) for address in addresses)
            except InvalidAddressError as e:
                raise ConfigurationError(f"allowlist {allowlist_id}: {e}")
        self._lists = MappingProxyType(table)
        self.logger.info("Allowlists loaded", allowlists={name: len(members) for name, members in table.items()})

    def has_allowlist(self, allowlist_id: str) -> bool:
        return allowlist_id in self._lists

    async def contains(self, allowlist_id: str, address: str) -> bool:
        members = self._lists.get(allowlist_id)
        if members is None:
            return False
        try:
            return normalize_address(address) in members
        except InvalidAddressError:
            return False

    def allowlist_ids(self) -> List[str]:
        return sorted(self._lists)

    @classmethod
    def from_file(cls, path: str) -> "InMemoryAllowlistRepository":
        return cls(read_allowlist_file(path))


def read_allowlist_file(path: str) -> Dict[str, List[str]]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"cannot read allowlist file {path}: {e}")
    lists = document.get("allowlists", document) if isinstance(document, dict) else None
    if not isinstance(lists, dict) or not all(isinstance(v, list) for v in lists.values()):
        raise ConfigurationError(f"allowlist file {path} must map names to address lists")
    return lists
