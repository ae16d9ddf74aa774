"""
mintvault Validation and Hardening Module

Validation, thread-safety and transactional primitives shared by the
issuance ledger and the custody vault:

1. Input validation with sanitization (addresses, digests, amounts, ids)
2. Serialized critical sections with re-entry detection
3. Compensation journals giving all-or-nothing operations
4. Ledger invariant enforcement

Security Model:
    - All inputs are untrusted until validated
    - All cryptographic comparisons are constant-time
    - All state mutations are atomic or compensated
    - Collaborators may not re-enter an operation in flight

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hmac
import logging
import re
import threading
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from functools import wraps
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(Exception):
    """Collection of validation errors."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")


class SecurityViolation(Exception):
    """Security constraint violated."""
    pass


class ReentrantCall(SecurityViolation):
    """A collaborator called back into an operation that is still running."""
    pass


class InvariantViolation(Exception):
    """Ledger invariant violated."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise ValidationErrors if validation failed."""
        if not self.is_valid:
            raise ValidationErrors(self.errors)

    def unwrap(self) -> Any:
        """Return the sanitized value or raise."""
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    HEX64_PATTERN = re.compile(r'^[a-f0-9]{64}$')
    HEX40_PATTERN = re.compile(r'^0x[a-f0-9]{40}$')

    MAX_BATCH_SIZE = 10000
    MAX_URI_LENGTH = 2048

    @classmethod
    def validate_address(cls, value: Any, field_name: str = "address") -> ValidationResult:
        """Validate an account address (0x + 40 hex), normalised to lowercase."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])

        lower = value.strip().lower()
        if not cls.HEX40_PATTERN.match(lower):
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a valid address (0x + 40 hex)", value)
            ])

        return ValidationResult.success(lower)

    @classmethod
    def validate_digest(cls, value: Any, field_name: str = "digest") -> ValidationResult:
        """Validate a SHA256 digest (64 hex chars)."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])

        lower = value.strip().lower()
        if not cls.HEX64_PATTERN.match(lower):
            return ValidationResult.failure([
                ValidationError(field_name, "Must be 64 lowercase hex characters", value)
            ])

        return ValidationResult.success(lower)

    @classmethod
    def validate_amount(
        cls,
        value: Any,
        field_name: str = "amount",
        min_value: Decimal = Decimal("0"),
    ) -> ValidationResult:
        """Validate a monetary amount."""
        if isinstance(value, bool):
            return ValidationResult.failure([
                ValidationError(field_name, "Cannot convert bool to Decimal", value)
            ])

        try:
            if isinstance(value, Decimal):
                amount = value
            elif isinstance(value, (str, int, float)):
                amount = Decimal(str(value))
            else:
                return ValidationResult.failure([
                    ValidationError(field_name, f"Cannot convert {type(value).__name__} to Decimal", value)
                ])
        except InvalidOperation:
            return ValidationResult.failure([
                ValidationError(field_name, "Invalid decimal value", value)
            ])

        if not amount.is_finite():
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a finite number", value)
            ])

        if amount < min_value:
            return ValidationResult.failure([
                ValidationError(field_name, f"Below minimum ({min_value})", value)
            ])

        return ValidationResult.success(amount)

    @classmethod
    def validate_count(
        cls,
        value: Any,
        field_name: str,
        min_value: int = 0,
    ) -> ValidationResult:
        """Validate an integer count."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected int, got {type(value).__name__}", value)
            ])

        if value < min_value:
            return ValidationResult.failure([
                ValidationError(field_name, f"Below minimum ({min_value})", value)
            ])

        return ValidationResult.success(value)

    @classmethod
    def validate_item_ids(cls, value: Any, field_name: str = "item_ids") -> ValidationResult:
        """Validate a batch of item ids. Order and duplicates are preserved."""
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            return ValidationResult.failure([
                ValidationError(field_name, "Expected a sequence of item ids", value)
            ])

        ids = list(value)
        if len(ids) > cls.MAX_BATCH_SIZE:
            return ValidationResult.failure([
                ValidationError(field_name, f"Too many ids (max {cls.MAX_BATCH_SIZE})", len(ids))
            ])

        errors = []
        for i, item_id in enumerate(ids):
            if isinstance(item_id, bool) or not isinstance(item_id, int) or item_id < 0:
                errors.append(ValidationError(f"{field_name}[{i}]", "Must be a non-negative int", item_id))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(ids)

    @classmethod
    def validate_uri(cls, value: Any, field_name: str = "uri") -> ValidationResult:
        """Validate a metadata URI fragment (may be empty)."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])

        sanitized = value.strip().replace('\x00', '')
        if len(sanitized) > cls.MAX_URI_LENGTH:
            return ValidationResult.failure([
                ValidationError(field_name, f"Too long (max {cls.MAX_URI_LENGTH} chars)", value)
            ])

        return ValidationResult.success(sanitized)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        """Constant-time string comparison."""
        return hmac.compare_digest(a.encode(), b.encode())


# =============================================================================
# SERIALIZED CRITICAL SECTION
# =============================================================================

class SerializedSection:
    """
    One non-reentrant critical section per ledger or vault instance.

    Every public mutating operation runs inside the section, so no
    interleaving of two operations on the same state is observable.
    A nested entry from the owning thread means an external collaborator
    called back into the instance mid-operation; that is rejected rather
    than allowed to observe intermediate state.

    Callbacks queued with ``after_release`` run once the section has been
    left without an exception, so they may call back into the instance.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._owner: Optional[int] = None
        self._pending: List[Callable[[], None]] = []

    def after_release(self, callback: Callable[[], None]) -> None:
        """Queue a callback to run after the current holder leaves the section."""
        self._pending.append(callback)

    def __enter__(self) -> 'SerializedSection':
        if self._owner == threading.get_ident():
            raise ReentrantCall(f"Re-entrant call into {self.name}")
        self._lock.acquire()
        self._owner = threading.get_ident()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        pending, self._pending = self._pending, []
        self._owner = None
        self._lock.release()
        if exc_type is None:
            for callback in pending:
                callback()

    @property
    def is_held(self) -> bool:
        return self._lock.locked()


F = TypeVar("F", bound=Callable[..., Any])


def serialized(func: F) -> F:
    """Run a method inside its instance's ``_section``."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._section:
            return func(self, *args, **kwargs)
    return wrapper  # type: ignore[return-value]


# =============================================================================
# COMPENSATION JOURNAL
# =============================================================================

class Journal:
    """
    Undo log for a single operation.

    Each applied effect registers its compensation. If the operation
    raises, compensations run in reverse order and the exception
    propagates; deferred callbacks (event publication) only run once
    the operation has committed. When a section is given they run after
    that section is released instead.

    Example:
        with Journal("issue_public", self._section) as journal:
            state.issued_count += amount
            journal.record("issued_count", lambda: setattr(state, "issued_count", before))
            registry.mint(caller, ids)
            journal.defer(lambda: bus.publish(event))
    """

    def __init__(self, operation: str, section: Optional[SerializedSection] = None):
        self.operation = operation
        self._section = section
        self._compensations: List[Tuple[str, Callable[[], None]]] = []
        self._deferred: List[Callable[[], None]] = []
        self._committed = False

    def record(self, name: str, compensate: Callable[[], None]) -> None:
        """Register the compensation for an effect that has just been applied."""
        self._compensations.append((name, compensate))

    def defer(self, callback: Callable[[], None]) -> None:
        """Register a callback to run after commit."""
        self._deferred.append(callback)

    @property
    def committed(self) -> bool:
        return self._committed

    def __enter__(self) -> 'Journal':
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is not None:
            self._rollback()
            return
        self._committed = True
        for callback in self._deferred:
            if self._section is not None:
                self._section.after_release(callback)
            else:
                callback()

    def _rollback(self) -> None:
        for name, compensate in reversed(self._compensations):
            try:
                compensate()
            except Exception as exc:
                logger.error(
                    "Compensation %s for %s failed: %s", name, self.operation, exc, exc_info=True,
                )
        self._compensations.clear()
        self._deferred.clear()


# =============================================================================
# LEDGER INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces ledger invariants after every mutation."""

    @staticmethod
    def check_bounded(field_name: str, value: int, limit: int) -> None:
        """Ensure value never exceeds its limit."""
        if value > limit:
            raise InvariantViolation(f"{field_name} {value} exceeds limit {limit}")

    @staticmethod
    def check_non_negative(field_name: str, value: Any) -> None:
        """Ensure value is non-negative."""
        if value < 0:
            raise InvariantViolation(f"{field_name} cannot be negative: {value}")
