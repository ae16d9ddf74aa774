"""
Single-administrator access control.

One address administers the collection and the vault: configuration,
sale phase, allowlist root, staking switch, registry binding, forced
withdrawal and payouts. Every other caller is refused with
NotAuthorizedCaller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from functools import wraps
from typing import Any, Callable, Dict, Optional, TypeVar

from mintvault.errors import NotAuthorizedCaller
from mintvault.hardening import Validators
from mintvault.observability import AuditLog, Layer, get_logger

logger = get_logger("access", Layer.ACCESS)


@dataclass(frozen=True)
class CallContext:
    """
    Who is calling and with what payment.

    ``caller`` is the immediate caller. ``origin`` is the account that
    started the call chain; it differs from ``caller`` when a contract or
    relayer calls on someone's behalf. ``value`` is the payment attached.
    """
    caller: str
    origin: Optional[str] = None
    value: Decimal = field(default=Decimal("0"))

    def __post_init__(self):
        object.__setattr__(self, "caller", Validators.validate_address(self.caller, "caller").unwrap())
        if self.origin is not None:
            object.__setattr__(self, "origin", Validators.validate_address(self.origin, "origin").unwrap())
        object.__setattr__(self, "value", Validators.validate_amount(self.value, "value").unwrap())

    @property
    def is_direct(self) -> bool:
        """True unless an origin different from the caller is attached."""
        return self.origin is None or self.origin == self.caller

    def to_dict(self) -> Dict[str, Any]:
        return {"caller": self.caller, "origin": self.origin, "value": str(self.value)}


class AccessControl:
    """Holds the administrator address and enforces it."""

    def __init__(self, admin: str, audit: Optional[AuditLog] = None):
        self._admin = Validators.validate_address(admin, "admin").unwrap()
        self.audit = audit or AuditLog()

    @property
    def admin(self) -> str:
        return self._admin

    def is_admin(self, address: str) -> bool:
        result = Validators.validate_address(address)
        return result.is_valid and result.sanitized_value == self._admin

    def require_admin(self, ctx: CallContext, action: str) -> None:
        """Raise NotAuthorizedCaller unless ``ctx.caller`` is the administrator."""
        if ctx.caller != self._admin:
            logger.warning(
                f"Rejected {action} from non-admin {ctx.caller}",
                operation=action,
                error_code=NotAuthorizedCaller.code,
            )
            self.audit.log(ctx.caller, action, "admin", action, "denied")
            raise NotAuthorizedCaller(f"{action} is restricted to the administrator", caller=ctx.caller)

    def require_direct_caller(self, ctx: CallContext, action: str) -> None:
        """Raise NotAuthorizedCaller when the call was relayed through another account."""
        if not ctx.is_direct:
            logger.warning(
                f"Rejected relayed {action} from {ctx.caller} (origin {ctx.origin})",
                operation=action,
                error_code=NotAuthorizedCaller.code,
            )
            self.audit.log(ctx.caller, action, "holder", ctx.origin, "denied")
            raise NotAuthorizedCaller(
                f"{action} must be called directly by the holder",
                caller=ctx.caller,
                origin=ctx.origin,
            )


F = TypeVar("F", bound=Callable[..., Any])


def admin_only(action: str) -> Callable[[F], F]:
    """Guard a ``method(self, ctx, ...)`` with the instance's ``access`` gate."""
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(self, ctx: CallContext, *args, **kwargs):
            self.access.require_admin(ctx, action)
            result = func(self, ctx, *args, **kwargs)
            self.access.audit.log(
                ctx.caller, action, "admin", action, "success",
                args=[str(a) for a in args],
            )
            return result
        return wrapper  # type: ignore[return-value]
    return decorator
