"""
Custody vault.

Holders deposit items they own into the vault and later reclaim them. The
vault records who deposited each item and when; that record, not the
registry, decides who may take an item back. The administrator can return
any deposited item to its original depositor.

Batch operations never fail because of an individual id: ids the caller may
not act on are skipped and reported as such in the returned ``BatchResult``.
They do fail as a whole when a precondition (staking closed, vault not
approved, caller not admin) does not hold, or when the registry refuses a
transfer, in which case every item already moved in the same call is moved
back.

Staked and Unstaked events are published after the operation has left the
vault's critical section, so subscribers may call the vault again.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from mintvault.access import AccessControl, CallContext, admin_only
from mintvault.config import DEFAULT_VAULT_ADDRESS
from mintvault.errors import MintVaultError, OperatorNotApproved, StakingClosed
from mintvault.events import EventBus, Staked, Unstaked
from mintvault.hardening import Journal, SerializedSection, Validators, serialized
from mintvault.observability import Layer, get_logger, timed_operation
from mintvault.registry import ItemRegistry

logger = get_logger("vault", Layer.VAULT)

PROCESSED = "processed"
SKIPPED = "skipped"


@dataclass(frozen=True)
class StakeRecord:
    """Who deposited an item and when. The empty record means not staked."""
    depositor: Optional[str] = None
    deposited_at: int = 0

    @property
    def is_staked(self) -> bool:
        return self.depositor is not None


NOT_STAKED = StakeRecord()


@dataclass(frozen=True)
class ItemOutcome:
    item_id: int
    status: str
    reason: str = ""

    @property
    def processed(self) -> bool:
        return self.status == PROCESSED


@dataclass
class BatchResult:
    """Per-item outcomes of a batch call, in request order."""
    operation: str
    outcomes: List[ItemOutcome] = field(default_factory=list)

    @property
    def processed(self) -> List[int]:
        return [o.item_id for o in self.outcomes if o.processed]

    @property
    def skipped(self) -> List[int]:
        return [o.item_id for o in self.outcomes if not o.processed]

    def __len__(self) -> int:
        return len(self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "processed": self.processed,
            "skipped": [
                {"item_id": o.item_id, "reason": o.reason}
                for o in self.outcomes if not o.processed
            ],
        }


class CustodyVault:
    """Custody records for deposited items over an external item registry."""

    def __init__(
        self,
        access: AccessControl,
        registry: ItemRegistry,
        address: str = DEFAULT_VAULT_ADDRESS,
        staking_open: bool = False,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.access = access
        self._registry = registry
        self._address = Validators.validate_address(address, "vault_address").unwrap()
        self._staking_open = bool(staking_open)
        self._records: Dict[int, StakeRecord] = {}
        self._bus = bus or EventBus()
        self._clock = clock or (lambda: int(time.time()))
        self._section = SerializedSection("custody-vault")

    @property
    def address(self) -> str:
        return self._address

    @property
    def registry(self) -> ItemRegistry:
        return self._registry

    @property
    def is_staking_open(self) -> bool:
        return self._staking_open

    def record(self, item_id: int) -> StakeRecord:
        return self._records.get(item_id, NOT_STAKED)

    def staked_by(self, address: str) -> List[int]:
        address = Validators.validate_address(address).unwrap()
        return sorted(i for i, r in self._records.items() if r.depositor == address)

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Deposits and withdrawals
    # ------------------------------------------------------------------

    @serialized
    @timed_operation(logger, "deposit_many")
    def deposit_many(self, ctx: CallContext, item_ids: Iterable[int]) -> BatchResult:
        """Deposit every listed item the caller currently holds."""
        ids = Validators.validate_item_ids(item_ids).unwrap()
        if not self._staking_open:
            raise self._denied(ctx, "deposit_many", StakingClosed("staking is not open"))
        if not self._registry.is_operator(ctx.caller, self._address):
            raise self._denied(ctx, "deposit_many", OperatorNotApproved(
                f"{self._address} is not an approved operator for {ctx.caller}",
                holder=ctx.caller,
            ))

        result = BatchResult("deposit_many")
        now = self._clock()
        with Journal("deposit_many", self._section) as journal:
            for item_id in ids:
                if self._registry.owner_of(item_id) != ctx.caller:
                    result.outcomes.append(ItemOutcome(item_id, SKIPPED, "not_owner"))
                    continue
                self._put(item_id, StakeRecord(ctx.caller, now), journal)
                self._move(ctx.caller, self._address, item_id, journal)
                result.outcomes.append(ItemOutcome(item_id, PROCESSED))
                journal.defer(self._publisher(Staked, ctx.caller, item_id, now))
            journal.defer(lambda: self._committed(ctx, result))
        return result

    @serialized
    @timed_operation(logger, "withdraw_many")
    def withdraw_many(self, ctx: CallContext, item_ids: Iterable[int]) -> BatchResult:
        """Return every listed item the caller deposited."""
        ids = Validators.validate_item_ids(item_ids).unwrap()
        result = BatchResult("withdraw_many")
        now = self._clock()
        with Journal("withdraw_many", self._section) as journal:
            for item_id in ids:
                record = self.record(item_id)
                if not record.is_staked or record.depositor != ctx.caller:
                    reason = "not_staked" if not record.is_staked else "not_depositor"
                    result.outcomes.append(ItemOutcome(item_id, SKIPPED, reason))
                    continue
                self._release(item_id, record, journal)
                result.outcomes.append(ItemOutcome(item_id, PROCESSED))
                journal.defer(self._publisher(Unstaked, record.depositor, item_id, now))
            journal.defer(lambda: self._committed(ctx, result))
        return result

    @serialized
    @admin_only("force_withdraw_many")
    def force_withdraw_many(self, ctx: CallContext, item_ids: Iterable[int]) -> BatchResult:
        """Return every listed deposited item to whoever deposited it."""
        ids = Validators.validate_item_ids(item_ids).unwrap()
        result = BatchResult("force_withdraw_many")
        now = self._clock()
        with Journal("force_withdraw_many", self._section) as journal:
            for item_id in ids:
                record = self.record(item_id)
                if not record.is_staked:
                    result.outcomes.append(ItemOutcome(item_id, SKIPPED, "not_staked"))
                    continue
                self._release(item_id, record, journal)
                result.outcomes.append(ItemOutcome(item_id, PROCESSED))
                journal.defer(self._publisher(Unstaked, record.depositor, item_id, now))
            journal.defer(lambda: self._committed(ctx, result))
        return result

    def _put(self, item_id: int, record: StakeRecord, journal: Journal) -> None:
        previous = self._records.get(item_id)
        self._records[item_id] = record

        def restore() -> None:
            if previous is None:
                self._records.pop(item_id, None)
            else:
                self._records[item_id] = previous
        journal.record(f"record:{item_id}", restore)

    def _release(self, item_id: int, record: StakeRecord, journal: Journal) -> None:
        del self._records[item_id]
        journal.record(f"record:{item_id}", lambda: self._records.__setitem__(item_id, record))
        self._move(self._address, record.depositor, item_id, journal)

    def _move(self, from_address: str, to_address: str, item_id: int, journal: Journal) -> None:
        # The vault moves deposits as approved operator and returns as holder;
        # an undo is performed on behalf of whoever now holds the item.
        self._registry.transfer(self._address, from_address, to_address, item_id)
        journal.record(
            f"transfer:{item_id}",
            lambda: self._registry.transfer(to_address, to_address, from_address, item_id),
        )

    def _publisher(self, event_type: Any, holder: str, item_id: int, timestamp: int) -> Callable[[], None]:
        return lambda: self._bus.publish(event_type(holder=holder, item_id=item_id, timestamp=timestamp))

    def _committed(self, ctx: CallContext, result: BatchResult) -> None:
        if result.processed:
            logger.info(
                f"{result.operation} by {ctx.caller}: "
                f"{len(result.processed)} processed, {len(result.skipped)} skipped",
                operation=result.operation,
                processed=result.processed,
                skipped=result.skipped,
            )
        self.access.audit.log(
            ctx.caller, result.operation, "vault", self._address, "success",
            processed=result.processed,
        )

    def _denied(self, ctx: CallContext, action: str, error: MintVaultError) -> MintVaultError:
        logger.warning(
            f"{action} rejected for {ctx.caller}: {error}",
            operation=action,
            error_code=error.code,
        )
        self.access.audit.log(ctx.caller, action, "vault", self._address, "denied", code=error.code)
        return error

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @serialized
    @admin_only("set_registry")
    def set_registry(self, ctx: CallContext, registry: ItemRegistry) -> None:
        """Bind the vault to another registry. Existing records are kept.

        The ledger keeps its own binding; ``DropService.set_registry`` moves both.
        """
        self._registry = registry

    @serialized
    @admin_only("toggle_staking")
    def toggle_staking(self, ctx: CallContext) -> bool:
        self._staking_open = not self._staking_open
        logger.info(
            f"Staking {'opened' if self._staking_open else 'closed'}",
            operation="toggle_staking",
        )
        return self._staking_open
