"""
Issuance ledger.

Tracks how many items exist, how many each holder has issued in each phase,
and the payments collected, and enforces every supply and quota cap before
asking the item registry to create new items.

Checks run in a fixed order, which decides the error reported when several
conditions fail at once:

    issue_public:    holder quota -> capacity -> phase -> payment
    issue_allowlist: holder quota -> allowlist cap -> phase -> payment -> proof

Every operation runs inside the ledger's serialized section and a
compensation journal: a failure at any point, including inside the registry,
leaves counters, balance and holder records exactly as they were.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from mintvault import merkle
from mintvault.access import AccessControl, CallContext, admin_only
from mintvault.config import CollectionConfig
from mintvault.errors import (
    AllowlistCapacityExceeded,
    CapacityExceeded,
    HolderQuotaExceeded,
    InsufficientPayment,
    InvalidAllowlistConfiguration,
    InvalidMembershipProof,
    MintVaultError,
    UnknownItem,
)
from mintvault.events import EventBus, ItemsIssued
from mintvault.hardening import (
    InvariantChecker,
    Journal,
    SerializedSection,
    Validators,
    serialized,
)
from mintvault.observability import Layer, get_logger, timed_operation
from mintvault.phase import SalePhase, SalePhaseMachine
from mintvault.registry import ItemRegistry

logger = get_logger("ledger", Layer.LEDGER)

EMPTY_ROOT = "0" * 64
FIRST_ITEM_ID = 1

Payout = Callable[[str, Decimal], None]


@dataclass
class PhaseAllocation:
    """Cap, unit price and per-holder maximum for one issuance phase."""
    cap: int
    price: Decimal
    max_per_holder: int


@dataclass
class HolderIssuanceRecord:
    """Per-holder issuance counters. The two phases are counted independently."""
    public_issued: int = 0
    allowlist_issued: int = 0


@dataclass
class CollectionState:
    """
    The whole mutable state of one collection.

    Invariants: ``issued_count <= capacity`` and ``allowlist.cap <= capacity``.
    ``public.cap`` always mirrors ``capacity``.
    """
    capacity: int
    public: PhaseAllocation
    allowlist: PhaseAllocation
    issued_count: int = 0
    allowlist_root: str = EMPTY_ROOT
    revealed: bool = False
    base_uri: str = ""
    unrevealed_uri: str = ""
    balance: Decimal = Decimal("0")
    holders: Dict[str, HolderIssuanceRecord] = field(default_factory=dict)

    @classmethod
    def from_config(cls, config: CollectionConfig) -> "CollectionState":
        capacity = config.capacity.get()
        allocation = config.allowlist_allocation.get()
        if allocation > capacity:
            raise InvalidAllowlistConfiguration(
                f"allowlist allocation {allocation} exceeds capacity {capacity}",
                allocation=allocation,
                capacity=capacity,
            )
        return cls(
            capacity=capacity,
            public=PhaseAllocation(
                cap=capacity,
                price=config.public_price.get(),
                max_per_holder=config.public_max_per_holder.get(),
            ),
            allowlist=PhaseAllocation(
                cap=allocation,
                price=config.allowlist_price.get(),
                max_per_holder=config.allowlist_max_per_holder.get(),
            ),
            base_uri=config.base_uri.get(),
            unrevealed_uri=config.unrevealed_uri.get(),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["balance"] = str(self.balance)
        data["public"]["price"] = str(self.public.price)
        data["allowlist"]["price"] = str(self.allowlist.price)
        return data


class MintLedger:
    """
    Supply- and quota-constrained issuance over an external item registry.

    Items are numbered sequentially from 1.
    """

    def __init__(
        self,
        access: AccessControl,
        registry: ItemRegistry,
        state: Optional[CollectionState] = None,
        bus: Optional[EventBus] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.access = access
        self._registry = registry
        self.state = state or CollectionState.from_config(CollectionConfig())
        self._phase = SalePhaseMachine()
        self._bus = bus or EventBus()
        self._clock = clock or (lambda: int(time.time()))
        self._section = SerializedSection("mint-ledger")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SalePhase:
        return self._phase.current

    @property
    def phase_history(self):
        return self._phase.history()

    @property
    def registry(self) -> ItemRegistry:
        return self._registry

    @property
    def issued_count(self) -> int:
        return self.state.issued_count

    @property
    def remaining_supply(self) -> int:
        return self.state.capacity - self.state.issued_count

    @property
    def balance(self) -> Decimal:
        return self.state.balance

    def holder(self, address: str) -> HolderIssuanceRecord:
        """Issuance counters for ``address`` (zeros if it never issued)."""
        address = Validators.validate_address(address).unwrap()
        record = self.state.holders.get(address)
        return HolderIssuanceRecord(**asdict(record)) if record else HolderIssuanceRecord()

    def snapshot(self) -> Dict[str, Any]:
        data = self.state.to_dict()
        data["phase"] = self.phase.name
        return data

    def metadata_for(self, item_id: int) -> str:
        """Metadata URI for an issued item."""
        Validators.validate_count(item_id, "item_id").raise_if_invalid()
        state = self.state
        if not FIRST_ITEM_ID <= item_id < FIRST_ITEM_ID + state.issued_count:
            raise UnknownItem(f"item {item_id} has not been issued", item_id=item_id)
        if not state.revealed:
            return state.unrevealed_uri
        return f"{state.base_uri}{item_id}.json"

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    @serialized
    @timed_operation(logger, "issue_public")
    def issue_public(self, ctx: CallContext, amount: int) -> List[int]:
        """Issue ``amount`` items to the caller during the public phase.

        Returns the ids of the new items.
        """
        Validators.validate_count(amount, "amount", min_value=1).raise_if_invalid()
        self.access.require_direct_caller(ctx, "issue_public")
        state = self.state
        record = state.holders.get(ctx.caller) or HolderIssuanceRecord()

        if record.public_issued + amount > state.public.max_per_holder:
            raise self._denied(ctx, "issue_public", HolderQuotaExceeded(
                f"public quota is {state.public.max_per_holder} per holder",
                issued=record.public_issued,
                requested=amount,
            ))
        if state.issued_count + amount > state.capacity:
            raise self._denied(ctx, "issue_public", CapacityExceeded(
                f"only {state.capacity - state.issued_count} items remain",
                requested=amount,
            ))
        try:
            self._phase.require(SalePhase.PUBLIC)
        except MintVaultError as e:
            raise self._denied(ctx, "issue_public", e)
        self._require_payment(ctx, "issue_public", amount, state.public.price)

        with Journal("issue_public", self._section) as journal:
            record = self._holder_record(ctx.caller, journal)
            before = record.public_issued
            record.public_issued += amount
            journal.record("public_issued", lambda: setattr(record, "public_issued", before))
            return self._issue(ctx, amount, SalePhase.PUBLIC, journal)

    @serialized
    @timed_operation(logger, "issue_allowlist")
    def issue_allowlist(self, ctx: CallContext, amount: int, proof: Sequence[str]) -> List[int]:
        """Issue ``amount`` items to an allowlisted caller.

        ``proof`` is the list of sibling digests proving the caller's address
        is committed under the current allowlist root. The proof does not
        bind the amount.
        """
        Validators.validate_count(amount, "amount", min_value=1).raise_if_invalid()
        self.access.require_direct_caller(ctx, "issue_allowlist")
        state = self.state
        record = state.holders.get(ctx.caller) or HolderIssuanceRecord()

        if record.allowlist_issued + amount > state.allowlist.max_per_holder:
            raise self._denied(ctx, "issue_allowlist", HolderQuotaExceeded(
                f"allowlist quota is {state.allowlist.max_per_holder} per holder",
                issued=record.allowlist_issued,
                requested=amount,
            ))
        if state.issued_count + amount > state.allowlist.cap:
            raise self._denied(ctx, "issue_allowlist", AllowlistCapacityExceeded(
                f"allowlist allocation of {state.allowlist.cap} would be exceeded",
                issued=state.issued_count,
                requested=amount,
            ))
        try:
            self._phase.require(SalePhase.ALLOWLIST)
        except MintVaultError as e:
            raise self._denied(ctx, "issue_allowlist", e)
        self._require_payment(ctx, "issue_allowlist", amount, state.allowlist.price)
        if not merkle.verify(proof, state.allowlist_root, merkle.leaf_hash(ctx.caller)):
            raise self._denied(ctx, "issue_allowlist", InvalidMembershipProof(
                "proof does not match the current allowlist root",
            ))

        with Journal("issue_allowlist", self._section) as journal:
            # Holder counter is updated before the items exist.
            record = self._holder_record(ctx.caller, journal)
            before = record.allowlist_issued
            record.allowlist_issued += amount
            journal.record("allowlist_issued", lambda: setattr(record, "allowlist_issued", before))
            return self._issue(ctx, amount, SalePhase.ALLOWLIST, journal)

    def _require_payment(self, ctx: CallContext, action: str, amount: int, price: Decimal) -> None:
        required = price * amount
        if ctx.value < required:
            raise self._denied(ctx, action, InsufficientPayment(
                f"payment {ctx.value} is below {required}",
                paid=str(ctx.value),
                required=str(required),
            ))

    def _holder_record(self, address: str, journal: Journal) -> HolderIssuanceRecord:
        holders = self.state.holders
        record = holders.get(address)
        if record is None:
            record = holders[address] = HolderIssuanceRecord()
            journal.record("holder_record", lambda: holders.pop(address, None))
        return record

    def _issue(self, ctx: CallContext, amount: int, phase: SalePhase, journal: Journal) -> List[int]:
        state = self.state
        before_count = state.issued_count
        before_balance = state.balance
        item_ids = list(range(FIRST_ITEM_ID + before_count, FIRST_ITEM_ID + before_count + amount))

        state.issued_count += amount
        journal.record("issued_count", lambda: setattr(state, "issued_count", before_count))
        InvariantChecker.check_bounded("issued_count", state.issued_count, state.capacity)

        # Overpayment is kept.
        state.balance += ctx.value
        journal.record("balance", lambda: setattr(state, "balance", before_balance))
        InvariantChecker.check_non_negative("balance", state.balance)

        self._registry.mint(ctx.caller, item_ids)

        action = f"issue_{phase.name.lower()}"
        issued_count = state.issued_count
        journal.defer(lambda: self._committed_issue(ctx, action, item_ids, phase, issued_count))
        return item_ids

    def _committed_issue(
        self, ctx: CallContext, action: str, item_ids: List[int], phase: SalePhase, issued_count: int,
    ) -> None:
        logger.info(
            f"{ctx.caller} issued {len(item_ids)} item(s) starting at {item_ids[0]}",
            operation=action,
            holder=ctx.caller,
            first_item_id=item_ids[0],
            amount=len(item_ids),
            issued_count=issued_count,
        )
        self.access.audit.log(
            ctx.caller, action, "collection", item_ids[0], "success",
            amount=len(item_ids), paid=str(ctx.value),
        )
        self._bus.publish(ItemsIssued(
            holder=ctx.caller,
            first_item_id=item_ids[0],
            amount=len(item_ids),
            phase=phase.name,
        ))

    def _denied(self, ctx: CallContext, action: str, error: MintVaultError) -> MintVaultError:
        logger.warning(
            f"{action} rejected for {ctx.caller}: {error}",
            operation=action,
            error_code=error.code,
        )
        self.access.audit.log(ctx.caller, action, "collection", ctx.caller, "denied", code=error.code)
        return error

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    @serialized
    @admin_only("set_capacity")
    def set_capacity(self, ctx: CallContext, capacity: int) -> None:
        capacity = Validators.validate_count(capacity, "capacity").unwrap()
        state = self.state
        if capacity < state.allowlist.cap:
            raise self._denied(ctx, "set_capacity", InvalidAllowlistConfiguration(
                f"capacity {capacity} is below the allowlist allocation {state.allowlist.cap}",
            ))
        if capacity < state.issued_count:
            raise self._denied(ctx, "set_capacity", CapacityExceeded(
                f"capacity {capacity} is below the {state.issued_count} items already issued",
            ))
        state.capacity = capacity
        state.public.cap = capacity

    @serialized
    @admin_only("set_public_price")
    def set_public_price(self, ctx: CallContext, price: Any) -> None:
        self.state.public.price = Validators.validate_amount(price, "price").unwrap()

    @serialized
    @admin_only("set_public_max_per_holder")
    def set_public_max_per_holder(self, ctx: CallContext, maximum: int) -> None:
        self.state.public.max_per_holder = Validators.validate_count(maximum, "max_per_holder").unwrap()

    @serialized
    @admin_only("set_allowlist_allocation")
    def set_allowlist_allocation(self, ctx: CallContext, allocation: int) -> None:
        allocation = Validators.validate_count(allocation, "allocation").unwrap()
        if allocation > self.state.capacity:
            raise self._denied(ctx, "set_allowlist_allocation", InvalidAllowlistConfiguration(
                f"allocation {allocation} exceeds capacity {self.state.capacity}",
            ))
        self.state.allowlist.cap = allocation

    @serialized
    @admin_only("set_allowlist_price")
    def set_allowlist_price(self, ctx: CallContext, price: Any) -> None:
        self.state.allowlist.price = Validators.validate_amount(price, "price").unwrap()

    @serialized
    @admin_only("set_allowlist_max_per_holder")
    def set_allowlist_max_per_holder(self, ctx: CallContext, maximum: int) -> None:
        self.state.allowlist.max_per_holder = Validators.validate_count(maximum, "max_per_holder").unwrap()

    @serialized
    @admin_only("set_allowlist_root")
    def set_allowlist_root(self, ctx: CallContext, root: str) -> None:
        self.state.allowlist_root = Validators.validate_digest(root, "allowlist_root").unwrap()

    @serialized
    @admin_only("set_metadata_base")
    def set_metadata_base(self, ctx: CallContext, base_uri: str) -> None:
        self.state.base_uri = Validators.validate_uri(base_uri, "base_uri").unwrap()

    @serialized
    @admin_only("set_unrevealed_uri")
    def set_unrevealed_uri(self, ctx: CallContext, uri: str) -> None:
        self.state.unrevealed_uri = Validators.validate_uri(uri, "unrevealed_uri").unwrap()

    @serialized
    @admin_only("toggle_revealed")
    def toggle_revealed(self, ctx: CallContext) -> bool:
        self.state.revealed = not self.state.revealed
        return self.state.revealed

    @serialized
    @admin_only("set_registry")
    def set_registry(self, ctx: CallContext, registry: ItemRegistry) -> None:
        """Bind the ledger to another registry. Items already issued stay where they are."""
        self._registry = registry

    @serialized
    @admin_only("set_sale_phase")
    def set_sale_phase(self, ctx: CallContext, phase: Any) -> SalePhase:
        transition = self._phase.transition(phase, actor=ctx.caller, at=self._clock())
        logger.info(
            f"Sale phase {transition.from_phase.name} -> {transition.to_phase.name}",
            operation="set_sale_phase",
        )
        return transition.to_phase

    @serialized
    @admin_only("withdraw_funds")
    def withdraw_funds(self, ctx: CallContext, payout: Payout) -> Decimal:
        """Pay the collected balance to the administrator.

        The balance is cleared before ``payout`` runs; if the payout fails the
        balance is restored and the error propagates.
        """
        state = self.state
        amount = state.balance
        if amount == 0:
            return amount

        with Journal("withdraw_funds", self._section) as journal:
            state.balance = Decimal("0")
            journal.record("balance", lambda: setattr(state, "balance", amount))
            payout(self.access.admin, amount)

        logger.info(f"Paid out {amount} to {self.access.admin}", operation="withdraw_funds")
        return amount
