"""Contract validation utilities."""
from typing import Iterable

from tabsera.models.contract import Contract, ContractStatus
from tabsera.utils.errors import ContractInvariantViolation


def validate_shares(tabsera_share_pct: int, center_share_pct: int) -> None:
    """
    Validate the revenue split.

    Rules:
    - each share is a whole percentage in 0..100
    - the two shares sum to exactly 100
    """
    for field, value in (("tabsera_share_pct", tabsera_share_pct), ("center_share_pct", center_share_pct)):
        if not 0 <= value <= 100:
            raise ContractInvariantViolation(field, f"must be within 0..100, got {value}")

    if tabsera_share_pct + center_share_pct != 100:
        raise ContractInvariantViolation(
            "tabsera_share_pct",
            f"shares must sum to 100 (tabsera {tabsera_share_pct} + center {center_share_pct} "
            f"= {tabsera_share_pct + center_share_pct})"
        )


def validate_due_day(due_day: int) -> None:
    if not 1 <= due_day <= 31:
        raise ContractInvariantViolation("due_day", f"must be within 1..31, got {due_day}")


def validate_contract(contract: Contract) -> None:
    """Validate a contract's own fields (not its relation to other contracts)."""
    validate_shares(contract.tabsera_share_pct, contract.center_share_pct)
    validate_due_day(contract.due_day)

    if contract.end_date < contract.start_date:
        raise ContractInvariantViolation(
            "end_date",
            f"{contract.end_date.date()} is before start_date {contract.start_date.date()}"
        )

    if contract.max_consecutive_overdue < 1:
        raise ContractInvariantViolation(
            "max_consecutive_overdue",
            f"must be at least 1, got {contract.max_consecutive_overdue}"
        )

    if len(contract.settlement_currency) != 3 or not contract.settlement_currency.isalpha():
        raise ContractInvariantViolation(
            "settlement_currency",
            f"must be a 3-letter currency code, got {contract.settlement_currency!r}"
        )


def validate_no_overlap(contract: Contract, existing: Iterable[Contract]) -> None:
    """
    Reject an active contract whose date range overlaps another active
    contract of the same center. Ranges are compared on their written
    start/end dates, both inclusive.
    """
    if contract.status != ContractStatus.ACTIVE:
        return

    for other in existing:
        if other.id == contract.id or other.center_id != contract.center_id:
            continue
        if other.status != ContractStatus.ACTIVE:
            continue
        if contract.start_date.date() <= other.end_date.date() and other.start_date.date() <= contract.end_date.date():
            raise ContractInvariantViolation(
                "start_date",
                f"range {contract.start_date.date()}..{contract.end_date.date()} overlaps active contract "
                f"{other.id} ({other.start_date.date()}..{other.end_date.date()})",
                center_id=contract.center_id,
            )
