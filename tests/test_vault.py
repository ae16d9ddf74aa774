"""
Custody vault tests.

Alice holds items 1-3 and Bob holds items 4-6 in the registry at the start
of every test.
"""

import pytest

from conftest import ADMIN, ALICE, BOB, VAULT, admin_ctx
from mintvault.access import CallContext
from mintvault.errors import NotAuthorizedCaller, OperatorNotApproved, StakingClosed
from mintvault.events import Staked, Unstaked
from mintvault.hardening import ValidationErrors
from mintvault.registry import InMemoryItemRegistry
from mintvault.vault import NOT_STAKED, SKIPPED, StakeRecord


@pytest.fixture
def holdings(registry):
    registry.seed({ALICE: [1, 2, 3], BOB: [4, 5, 6]})
    return registry


@pytest.fixture
def open_vault(vault, holdings):
    vault.toggle_staking(admin_ctx())
    holdings.set_operator(ALICE, VAULT)
    holdings.set_operator(BOB, VAULT)
    return vault


@pytest.fixture
def events(bus):
    received = []
    bus.subscribe(Staked, Unstaked)(received.append)
    return received


def as_(address: str) -> CallContext:
    return CallContext(address)


class TestInitialState:
    """A freshly built vault."""

    def test_staking_closed(self, vault):
        assert vault.is_staking_open is False

    def test_bound_registry(self, vault, registry):
        assert vault.registry is registry

    def test_nothing_staked(self, vault):
        assert vault.record(1) == StakeRecord(None, 0)
        assert vault.record(1) is NOT_STAKED
        assert len(vault) == 0


class TestAdministration:
    """Registry binding and the staking switch."""

    def test_set_registry_admin_only(self, vault):
        with pytest.raises(NotAuthorizedCaller):
            vault.set_registry(as_(BOB), InMemoryItemRegistry())

    def test_set_registry(self, vault):
        other = InMemoryItemRegistry()
        vault.set_registry(admin_ctx(), other)
        assert vault.registry is other

    def test_toggle_staking_admin_only(self, vault):
        with pytest.raises(NotAuthorizedCaller):
            vault.toggle_staking(as_(BOB))
        assert vault.is_staking_open is False

    def test_toggle_staking(self, vault):
        assert vault.toggle_staking(admin_ctx()) is True
        assert vault.is_staking_open is True
        assert vault.toggle_staking(admin_ctx()) is False


class TestDeposit:
    """deposit_many."""

    def test_rejected_when_staking_closed(self, vault, holdings):
        holdings.set_operator(ALICE, VAULT)
        with pytest.raises(StakingClosed):
            vault.deposit_many(as_(ALICE), [1, 2, 3])

    def test_closed_reported_before_missing_approval(self, vault, holdings):
        with pytest.raises(StakingClosed):
            vault.deposit_many(as_(ALICE), [1])

    def test_rejected_without_operator_approval(self, vault, holdings):
        vault.toggle_staking(admin_ctx())
        with pytest.raises(OperatorNotApproved):
            vault.deposit_many(as_(ALICE), [1, 2, 3])
        assert holdings.owner_of(1) == ALICE

    def test_items_not_owned_are_skipped(self, open_vault, holdings, events):
        result = open_vault.deposit_many(as_(ALICE), [4, 5, 6])
        assert result.processed == []
        assert result.skipped == [4, 5, 6]
        assert all(o.status == SKIPPED and o.reason == "not_owner" for o in result.outcomes)
        for item_id in (4, 5, 6):
            assert open_vault.record(item_id) == StakeRecord(None, 0)
            assert holdings.owner_of(item_id) == BOB
        assert events == []

    def test_deposit_records_depositor_and_time(self, open_vault, clock):
        open_vault.deposit_many(as_(ALICE), [1, 2, 3])
        for item_id in (1, 2, 3):
            assert open_vault.record(item_id) == StakeRecord(ALICE, clock.now)
        assert open_vault.staked_by(ALICE) == [1, 2, 3]

    def test_vault_takes_custody(self, open_vault, holdings):
        open_vault.deposit_many(as_(ALICE), [1, 2, 3])
        assert [holdings.owner_of(i) for i in (1, 2, 3)] == [VAULT, VAULT, VAULT]

    def test_emits_staked_per_item(self, open_vault, events, clock):
        open_vault.deposit_many(as_(ALICE), [1])
        assert len(events) == 1
        event = events[0]
        assert isinstance(event, Staked)
        assert (event.holder, event.item_id, event.timestamp) == (ALICE, 1, clock.now)

    def test_mixed_batch(self, open_vault, events):
        result = open_vault.deposit_many(as_(ALICE), [1, 4, 99, 2])
        assert result.processed == [1, 2]
        assert result.skipped == [4, 99]
        assert [e.item_id for e in events] == [1, 2]

    def test_duplicate_id_processed_once(self, open_vault, events):
        result = open_vault.deposit_many(as_(ALICE), [1, 1])
        assert result.processed == [1]
        assert result.skipped == [1]
        assert len(events) == 1

    def test_invalid_ids_rejected(self, open_vault):
        with pytest.raises(ValidationErrors):
            open_vault.deposit_many(as_(ALICE), [1, "2"])
        assert open_vault.record(1) is NOT_STAKED


class TestWithdraw:
    """withdraw_many."""

    @pytest.fixture
    def staked(self, open_vault, clock, events):
        open_vault.deposit_many(as_(ALICE), [1, 2, 3])
        staked_at = clock.now
        clock.advance(3600)
        events.clear()
        return staked_at

    def test_non_depositor_cannot_withdraw(self, open_vault, staked, holdings, events):
        result = open_vault.withdraw_many(as_(BOB), [1])
        assert result.skipped == [1]
        assert result.outcomes[0].reason == "not_depositor"
        assert open_vault.record(1) == StakeRecord(ALICE, staked)
        assert holdings.owner_of(1) == VAULT
        assert events == []

    def test_withdraw_clears_record(self, open_vault, staked):
        open_vault.withdraw_many(as_(ALICE), [1])
        assert open_vault.record(1) == StakeRecord(None, 0)
        assert open_vault.staked_by(ALICE) == [2, 3]

    def test_withdraw_returns_item(self, open_vault, staked, holdings):
        open_vault.withdraw_many(as_(ALICE), [1])
        assert holdings.owner_of(1) == ALICE

    def test_emits_unstaked_with_current_time(self, open_vault, staked, events, clock):
        open_vault.withdraw_many(as_(ALICE), [1])
        assert len(events) == 1
        assert isinstance(events[0], Unstaked)
        assert (events[0].holder, events[0].item_id, events[0].timestamp) == (ALICE, 1, clock.now)

    def test_never_staked_item_is_a_no_op(self, open_vault, holdings, events):
        """Staking item 5 then withdrawing item 6 changes nothing."""
        open_vault.deposit_many(as_(BOB), [5])
        events.clear()
        transfers = holdings.transfer_count

        result = open_vault.withdraw_many(as_(BOB), [6])

        assert result.processed == []
        assert result.outcomes[0].reason == "not_staked"
        assert open_vault.record(5).depositor == BOB
        assert open_vault.record(6) is NOT_STAKED
        assert holdings.owner_of(6) == BOB
        assert holdings.transfer_count == transfers
        assert events == []

    def test_withdraw_works_while_staking_closed(self, open_vault, staked, holdings):
        open_vault.toggle_staking(admin_ctx())
        open_vault.withdraw_many(as_(ALICE), [2])
        assert holdings.owner_of(2) == ALICE


class TestForceWithdraw:
    """force_withdraw_many."""

    @pytest.fixture
    def staked(self, open_vault, events):
        open_vault.deposit_many(as_(ALICE), [1, 2])
        events.clear()

    def test_admin_only(self, open_vault, staked, holdings):
        with pytest.raises(NotAuthorizedCaller):
            open_vault.force_withdraw_many(as_(BOB), [1])
        with pytest.raises(NotAuthorizedCaller):
            open_vault.force_withdraw_many(as_(ALICE), [1])
        assert holdings.owner_of(1) == VAULT

    def test_nothing_staked_emits_nothing(self, open_vault, events):
        result = open_vault.force_withdraw_many(admin_ctx(), [1, 2, 3])
        assert result.processed == []
        assert events == []

    def test_clears_record(self, open_vault, staked):
        open_vault.force_withdraw_many(admin_ctx(), [1])
        assert open_vault.record(1) == StakeRecord(None, 0)

    def test_returns_item_to_depositor_not_admin(self, open_vault, staked, holdings):
        open_vault.force_withdraw_many(admin_ctx(), [1, 2])
        assert holdings.owner_of(1) == ALICE
        assert holdings.owner_of(2) == ALICE
        assert holdings.items_of(ADMIN) == []

    def test_event_names_original_depositor(self, open_vault, staked, events, clock):
        open_vault.force_withdraw_many(admin_ctx(), [1])
        assert [(e.holder, e.item_id, e.timestamp) for e in events] == [(ALICE, 1, clock.now)]

    def test_mixed_depositors(self, open_vault, staked, holdings):
        open_vault.deposit_many(as_(BOB), [4])
        result = open_vault.force_withdraw_many(admin_ctx(), [1, 4, 6])
        assert result.processed == [1, 4]
        assert result.skipped == [6]
        assert holdings.owner_of(1) == ALICE
        assert holdings.owner_of(4) == BOB


class TestBatchResult:
    """Per-item outcomes."""

    def test_to_dict(self, open_vault):
        result = open_vault.deposit_many(as_(ALICE), [1, 4])
        assert result.to_dict() == {
            "operation": "deposit_many",
            "processed": [1],
            "skipped": [{"item_id": 4, "reason": "not_owner"}],
        }
        assert len(result) == 2

    def test_audited(self, open_vault, access):
        open_vault.deposit_many(as_(BOB), [1])
        events = access.audit.events(action="deposit_many")
        assert events[-1].actor == BOB
        assert events[-1].details == {"processed": []}
