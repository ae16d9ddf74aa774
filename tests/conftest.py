import logging
import os
import pathlib
import sys
from decimal import Decimal

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import mintvault`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from mintvault.access import AccessControl, CallContext  # noqa: E402
from mintvault.config import DEFAULT_VAULT_ADDRESS  # noqa: E402
from mintvault.events import EventBus  # noqa: E402
from mintvault.ledger import CollectionState, MintLedger, PhaseAllocation  # noqa: E402
from mintvault.registry import InMemoryItemRegistry  # noqa: E402
from mintvault.vault import CustodyVault  # noqa: E402


ADMIN = "0x" + "a0" * 20
ALICE = "0x" + "11" * 20
BOB = "0x" + "22" * 20
CAROL = "0x" + "33" * 20
VAULT = DEFAULT_VAULT_ADDRESS


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless MINTVAULT_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    run_slow = _env_flag('MINTVAULT_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set MINTVAULT_RUN_SLOW=1 to enable'))


class FakeClock:
    """Settable integer clock."""

    def __init__(self, now: int = 1_700_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


def make_state(
    capacity: int = 10,
    allowlist_cap: int = 5,
    public_price: str = "0.1",
    public_max: int = 5,
    allowlist_price: str = "0.08",
    allowlist_max: int = 2,
) -> CollectionState:
    return CollectionState(
        capacity=capacity,
        public=PhaseAllocation(cap=capacity, price=Decimal(public_price), max_per_holder=public_max),
        allowlist=PhaseAllocation(cap=allowlist_cap, price=Decimal(allowlist_price), max_per_holder=allowlist_max),
    )


def admin_ctx() -> CallContext:
    return CallContext(ADMIN)


def reset_logging() -> None:
    """Drop the package handler installed by configure_logging."""
    root = logging.getLogger("mintvault")
    for handler in list(root.handlers):
        if getattr(handler, "_mintvault", False):
            root.removeHandler(handler)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> InMemoryItemRegistry:
    return InMemoryItemRegistry()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def access() -> AccessControl:
    return AccessControl(ADMIN)


@pytest.fixture
def ledger(access, registry, bus, clock) -> MintLedger:
    return MintLedger(access, registry, state=make_state(), bus=bus, clock=clock)


@pytest.fixture
def vault(access, registry, bus, clock) -> CustodyVault:
    return CustodyVault(access, registry, address=VAULT, bus=bus, clock=clock)
