"""Sale phase state machine.

Three phases gate issuance: CLOSED, ALLOWLIST and PUBLIC. The administrator
may move between any two phases at any time; only the issuance operations
consult the current phase. The machine starts CLOSED.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Deque, Dict, List

from mintvault.errors import PhaseClosedForOperation
from mintvault.hardening import ValidationError


class SalePhase(IntEnum):
    """Issuance phases; values match the administrative wire encoding."""
    CLOSED = 0
    ALLOWLIST = 1
    PUBLIC = 2

    @classmethod
    def coerce(cls, value: Any) -> "SalePhase":
        """Accept a member, its int value or its name; reject anything else."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValidationError("phase", "Expected SalePhase, int or name", value)
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError("phase", f"Out of range (0..{len(cls) - 1})", value) from None
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ValidationError("phase", "Unknown phase name", value) from None
        raise ValidationError("phase", "Expected SalePhase, int or name", value)


@dataclass(frozen=True)
class PhaseTransition:
    from_phase: SalePhase
    to_phase: SalePhase
    actor: str
    at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_phase.name,
            "to": self.to_phase.name,
            "actor": self.actor,
            "at": self.at,
        }


class SalePhaseMachine:
    """Holds the current phase and a bounded transition history."""

    HISTORY_LIMIT = 256

    def __init__(self, initial: SalePhase = SalePhase.CLOSED):
        self._phase = SalePhase.coerce(initial)
        self._history: Deque[PhaseTransition] = deque(maxlen=self.HISTORY_LIMIT)
        self._lock = threading.Lock()

    @property
    def current(self) -> SalePhase:
        return self._phase

    def transition(self, target: Any, actor: str = "", at: int = 0) -> PhaseTransition:
        """Move to ``target``. Any phase may follow any other."""
        target = SalePhase.coerce(target)
        with self._lock:
            record = PhaseTransition(self._phase, target, actor, at)
            self._phase = target
            self._history.append(record)
        return record

    def is_open(self, phase: SalePhase) -> bool:
        return self._phase == phase

    def require(self, phase: SalePhase) -> None:
        """Raise PhaseClosedForOperation unless ``phase`` is current."""
        current = self._phase
        if current != phase:
            raise PhaseClosedForOperation(
                f"{phase.name.lower()} issuance is not open (current phase: {current.name})",
                required=phase.name,
                current=current.name,
            )

    def history(self) -> List[PhaseTransition]:
        with self._lock:
            return list(self._history)
