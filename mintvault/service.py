"""
Drop service facade.

Wires one collection from configuration: a single administrator, the
issuance ledger and the custody vault sharing one item registry, one event
bus and one audit log.

Usage:

    registry = InMemoryItemRegistry()
    service = DropService.from_config(admin="0x...", registry=registry)
    service.ledger.set_sale_phase(admin_ctx, SalePhase.PUBLIC)
    service.ledger.issue_public(CallContext(holder, value=Decimal("0.2")), 2)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from mintvault.access import AccessControl, CallContext
from mintvault.config import MintVaultConfig, get_config
from mintvault.events import EventBus
from mintvault.ledger import CollectionState, MintLedger
from mintvault.observability import AuditLog, Layer, get_logger
from mintvault.registry import ItemRegistry
from mintvault.vault import CustodyVault

logger = get_logger("service", Layer.ACCESS)


@dataclass
class DropService:
    access: AccessControl
    ledger: MintLedger
    vault: CustodyVault
    bus: EventBus
    audit: AuditLog

    @classmethod
    def from_config(
        cls,
        admin: str,
        registry: ItemRegistry,
        config: Optional[MintVaultConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> "DropService":
        """Build a service; raises ConfigValidationError for invalid values."""
        config = config or get_config()
        state = CollectionState.from_config(config.collection)
        audit = AuditLog(retention=config.observability.audit_retention.get())
        access = AccessControl(admin, audit)
        bus = EventBus()
        ledger = MintLedger(access, registry, state=state, bus=bus, clock=clock)
        vault = CustodyVault(
            access,
            registry,
            address=config.vault.address.get(),
            staking_open=config.vault.staking_open.get(),
            bus=bus,
            clock=clock,
        )
        logger.info(
            f"Drop service ready (capacity {ledger.state.capacity}, vault {vault.address})",
            operation="from_config",
            admin=access.admin,
        )
        return cls(access=access, ledger=ledger, vault=vault, bus=bus, audit=audit)

    @property
    def registry(self) -> ItemRegistry:
        return self.ledger.registry

    def set_registry(self, ctx: CallContext, registry: ItemRegistry) -> None:
        """Rebind the ledger and the vault to ``registry`` together."""
        self.ledger.set_registry(ctx, registry)
        self.vault.set_registry(ctx, registry)

    def status(self) -> Dict[str, Any]:
        return {
            "admin": self.access.admin,
            "collection": self.ledger.snapshot(),
            "vault": {
                "address": self.vault.address,
                "staking_open": self.vault.is_staking_open,
                "staked": len(self.vault),
            },
            "audit_events": self.audit.total,
            "events": self.bus.metrics,
        }
