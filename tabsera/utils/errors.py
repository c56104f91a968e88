"""Settlement engine errors.

Every error carries enough context (center, period, stage) for an operator
to diagnose a failed run without re-deriving the computation.
"""
from datetime import datetime
from typing import Any, Dict, Optional


class SettlementEngineError(Exception):
    """Base class for all settlement engine failures."""

    code = "settlement_error"

    def __init__(
        self,
        message: str,
        *,
        center_id: Optional[str] = None,
        period_start: Optional[datetime] = None,
        period_end: Optional[datetime] = None,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.center_id = center_id
        self.period_start = period_start
        self.period_end = period_end
        self.stage = stage

    def with_context(self, **context: Any) -> "SettlementEngineError":
        """Fill in context the raising layer did not know about."""
        for key, value in context.items():
            if getattr(self, key, None) is None:
                setattr(self, key, value)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "center_id": self.center_id,
            "period_start": self.period_start.isoformat() if self.period_start else None,
            "period_end": self.period_end.isoformat() if self.period_end else None,
            "stage": self.stage,
        }

    def __str__(self) -> str:
        parts = [self.message]
        if self.center_id:
            parts.append(f"center={self.center_id}")
        if self.period_start and self.period_end:
            parts.append(f"period={self.period_start.date()}..{self.period_end.date()}")
        if self.stage:
            parts.append(f"stage={self.stage}")
        return " ".join(parts)


class ContractInvariantViolation(SettlementEngineError):
    """A contract write broke one of the registry's rules."""

    code = "contract_invariant_violation"

    def __init__(self, field: str, message: str, **context: Any):
        context.setdefault("stage", "contract_write")
        super().__init__(f"{field}: {message}", **context)
        self.field = field

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        return data


class NoActiveContract(SettlementEngineError):
    code = "no_active_contract"


class RateUnavailable(SettlementEngineError):
    code = "rate_unavailable"

    def __init__(self, currency: str, as_of: datetime, **context: Any):
        context.setdefault("stage", "currency_conversion")
        super().__init__(
            f"No exchange rate for {currency} effective on or before {as_of.date().isoformat()}",
            **context
        )
        self.currency = currency
        self.as_of = as_of

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["currency"] = self.currency
        data["as_of"] = self.as_of.isoformat()
        return data


class InvalidSettlementPeriod(SettlementEngineError):
    code = "invalid_settlement_period"


class IllegalStateTransition(SettlementEngineError):
    code = "illegal_state_transition"

    def __init__(self, current: str, requested: str, **context: Any):
        context.setdefault("stage", "state_transition")
        super().__init__(f"Cannot move settlement from {current} to {requested}", **context)
        self.current = current
        self.requested = requested


class SettlementNotFound(SettlementEngineError):
    code = "settlement_not_found"


class CenterTimeout(SettlementEngineError):
    code = "center_timeout"


class SettlementNotInvoiceable(SettlementEngineError):
    """Invoice or reminder requested for a settlement that cannot take one."""

    code = "settlement_not_invoiceable"
