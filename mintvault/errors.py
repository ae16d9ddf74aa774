"""Error kinds raised by issuance, custody and administrative operations.

Every error aborts the whole operation: nothing it did before failing stays
applied. Each kind carries a stable ``code`` used in logs and the audit trail.
"""

from __future__ import annotations

from typing import Any, Dict


class MintVaultError(Exception):
    """Base class for operation failures reported to the caller."""

    code = "mintvault_error"

    def __init__(self, message: str = "", **details: Any):
        self.details: Dict[str, Any] = details
        super().__init__(message or self.code)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self), "details": self.details}


class NotAuthorizedCaller(MintVaultError):
    """Non-admin calling an admin-only operation, or an indirect issuance caller."""
    code = "not_authorized_caller"


class InvalidAllowlistConfiguration(MintVaultError):
    """Allowlist allocation would exceed capacity."""
    code = "invalid_allowlist_configuration"


class HolderQuotaExceeded(MintVaultError):
    code = "holder_quota_exceeded"


class CapacityExceeded(MintVaultError):
    code = "capacity_exceeded"


class AllowlistCapacityExceeded(MintVaultError):
    code = "allowlist_capacity_exceeded"


class PhaseClosedForOperation(MintVaultError):
    code = "phase_closed"


class InsufficientPayment(MintVaultError):
    code = "insufficient_payment"


class InvalidMembershipProof(MintVaultError):
    code = "invalid_membership_proof"


class StakingClosed(MintVaultError):
    code = "staking_closed"


class OperatorNotApproved(MintVaultError):
    """The vault has not been approved as operator over the caller's items."""
    code = "operator_not_approved"


class UnknownItem(MintVaultError, LookupError):
    code = "unknown_item"


__all__ = [
    "MintVaultError",
    "NotAuthorizedCaller",
    "InvalidAllowlistConfiguration",
    "HolderQuotaExceeded",
    "CapacityExceeded",
    "AllowlistCapacityExceeded",
    "PhaseClosedForOperation",
    "InsufficientPayment",
    "InvalidMembershipProof",
    "StakingClosed",
    "OperatorNotApproved",
    "UnknownItem",
]
