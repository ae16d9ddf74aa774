"""
Item registry interface.

The registry is the authoritative record of which account currently holds
which item. The ledger asks it to create items; the vault asks it who holds
an item, whether the vault may move a holder's items, and to move them.

``ItemRegistry`` is the protocol the core depends on. ``InMemoryItemRegistry``
is a reference implementation used by the tests and the CLI.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple


class RegistryError(Exception):
    """The registry refused a transfer or creation."""
    pass


class ItemRegistry(Protocol):
    """
    Protocol for the external item registry.

    Implementations must treat ``mint`` and ``transfer`` as all-or-nothing.
    """

    def owner_of(self, item_id: int) -> Optional[str]:
        """Current holder of ``item_id``, or None if it does not exist."""
        ...

    def is_operator(self, owner: str, operator: str) -> bool:
        """Whether ``operator`` may move every item held by ``owner``."""
        ...

    def transfer(self, operator: str, from_address: str, to_address: str, item_id: int) -> None:
        """Move ``item_id`` from ``from_address`` to ``to_address`` on behalf of ``operator``."""
        ...

    def mint(self, to_address: str, item_ids: List[int]) -> None:
        """Create ``item_ids`` held by ``to_address``."""
        ...


class InMemoryItemRegistry:
    """
    In-memory item registry for testing and local tooling.

    Addresses are compared case-insensitively.
    """

    def __init__(self):
        self._owners: Dict[int, str] = {}
        self._operators: Set[Tuple[str, str]] = set()
        self._lock = threading.RLock()
        self.transfer_count = 0

    def owner_of(self, item_id: int) -> Optional[str]:
        with self._lock:
            return self._owners.get(item_id)

    def is_operator(self, owner: str, operator: str) -> bool:
        with self._lock:
            return (owner.lower(), operator.lower()) in self._operators

    def set_operator(self, owner: str, operator: str, approved: bool = True) -> None:
        """Grant or revoke ``operator`` rights over every item of ``owner``."""
        key = (owner.lower(), operator.lower())
        with self._lock:
            if approved:
                self._operators.add(key)
            else:
                self._operators.discard(key)

    def transfer(self, operator: str, from_address: str, to_address: str, item_id: int) -> None:
        operator, from_address, to_address = operator.lower(), from_address.lower(), to_address.lower()
        with self._lock:
            owner = self._owners.get(item_id)
            if owner is None:
                raise RegistryError(f"item {item_id} does not exist")
            if owner != from_address:
                raise RegistryError(f"item {item_id} is not held by {from_address}")
            if operator != owner and (owner, operator) not in self._operators:
                raise RegistryError(f"{operator} may not move items of {owner}")
            self._owners[item_id] = to_address
            self.transfer_count += 1

    def mint(self, to_address: str, item_ids: List[int]) -> None:
        to_address = to_address.lower()
        with self._lock:
            existing = [i for i in item_ids if i in self._owners]
            if existing:
                raise RegistryError(f"items already exist: {existing}")
            for item_id in item_ids:
                self._owners[item_id] = to_address

    def items_of(self, owner: str) -> List[int]:
        owner = owner.lower()
        with self._lock:
            return sorted(i for i, o in self._owners.items() if o == owner)

    def balance_of(self, owner: str) -> int:
        return len(self.items_of(owner))

    def total_supply(self) -> int:
        with self._lock:
            return len(self._owners)

    def seed(self, holdings: Dict[str, Iterable[int]]) -> None:
        """Assign existing items directly, bypassing issuance (fixtures)."""
        with self._lock:
            for owner, item_ids in holdings.items():
                for item_id in item_ids:
                    self._owners[item_id] = owner.lower()
