"""
mintvault: allowlist-gated issuance and custody staking for item collections

Architecture
────────────

    ┌──────────────────────────────────────────────────────────────────┐
    │  SURFACES                                                        │
    │    service.py      DropService facade wired from configuration   │
    │    cli.py          Allowlist tooling and config inspection       │
    │                                                                  │
    │  CORE                                                            │
    │    ledger.py       Supply, quotas, payments, metadata            │
    │    vault.py        Custody records, batch deposit/withdraw       │
    │    phase.py        CLOSED / ALLOWLIST / PUBLIC state machine     │
    │    merkle.py       Allowlist root, proofs, verification          │
    │    access.py       Single administrator, call context            │
    │    registry.py     External item registry protocol               │
    │                                                                  │
    │  FOUNDATION                                                      │
    │    hardening.py    Validation, serialized sections, journals     │
    │    errors.py       Operation failures with stable codes          │
    │    events.py       Staked / Unstaked / ItemsIssued, event bus    │
    │    observability.py Structured logging, hash-chained audit log   │
    │    config.py       YAML/env configuration with JSON Schema       │
    └──────────────────────────────────────────────────────────────────┘

Every mutating operation on the ledger or the vault is all-or-nothing and
serialized per instance. A collaborator (registry, payout) that calls back
into an operation in flight is rejected with ReentrantCall.

Copyright (c) 2026 Momentum. All rights reserved.
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):

    if name in ("MintLedger", "CollectionState", "PhaseAllocation", "HolderIssuanceRecord"):
        from mintvault import ledger
        return getattr(ledger, name)

    if name in ("CustodyVault", "StakeRecord", "ItemOutcome", "BatchResult"):
        from mintvault import vault
        return getattr(vault, name)

    if name in ("SalePhase", "SalePhaseMachine"):
        from mintvault import phase
        return getattr(phase, name)

    if name in ("AccessControl", "CallContext"):
        from mintvault import access
        return getattr(access, name)

    if name in ("ItemRegistry", "InMemoryItemRegistry", "RegistryError"):
        from mintvault import registry
        return getattr(registry, name)

    if name in ("EventBus", "Staked", "Unstaked", "ItemsIssued"):
        from mintvault import events
        return getattr(events, name)

    if name in ("ValidationError", "ValidationErrors", "ReentrantCall"):
        from mintvault import hardening
        return getattr(hardening, name)

    if name == "DropService":
        from mintvault.service import DropService
        return DropService

    raise AttributeError(f"module 'mintvault' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Core
    "MintLedger",
    "CollectionState",
    "PhaseAllocation",
    "HolderIssuanceRecord",
    "CustodyVault",
    "StakeRecord",
    "ItemOutcome",
    "BatchResult",
    "SalePhase",
    "SalePhaseMachine",
    "AccessControl",
    "CallContext",
    "ItemRegistry",
    "InMemoryItemRegistry",
    "RegistryError",
    # Events
    "EventBus",
    "Staked",
    "Unstaked",
    "ItemsIssued",
    # Hardening
    "ValidationError",
    "ValidationErrors",
    "ReentrantCall",
    # Facade
    "DropService",
]
