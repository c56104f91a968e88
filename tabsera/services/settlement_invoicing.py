"""
SettlementInvoicing - Invoices and payment reminders for closed settlements.

An invoice is issued once per final settlement and can be (re)sent; a
reminder can follow once the invoice has gone out. None of these touch the
settlement status: pending/overdue/paid moves only through the state machine.
"""

import logging
from datetime import datetime
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from tabsera.models.audit import AuditAction
from tabsera.models.base import utcnow
from tabsera.models.settlement import Settlement, SettlementStatus
from tabsera.repositories.audit_repo import AuditRepository
from tabsera.repositories.settlement_repo import SettlementRepository
from tabsera.utils.errors import SettlementNotFound, SettlementNotInvoiceable

logger = logging.getLogger(__name__)


class SettlementInvoicing:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.settlements = SettlementRepository(db)
        self.audit = AuditRepository(db)

    async def issue_invoice(self, settlement_id: str, actor: str, now: Optional[datetime] = None) -> Settlement:
        """
        Assign the settlement its invoice number.

        Issuing again returns the settlement with its existing number.
        """
        now = now or utcnow()
        settlement = await self._get(settlement_id, "invoice_issue")
        if settlement.invoice_number:
            return settlement
        self._ensure_open(settlement, "invoice_issue")

        number = await self.settlements.next_invoice_number(now.year)
        issued = await self.settlements.annotate_open(
            settlement.id,
            conditions={"invoice_number": None},
            set_fields={"invoice_number": number, "invoice_issued_at": now}
        )
        if issued is None:
            # Issued or paid concurrently
            current = await self._get(settlement_id, "invoice_issue")
            if current.invoice_number:
                return current
            self._ensure_open(current, "invoice_issue")
            raise self._not_invoiceable(current, "could not be invoiced", "invoice_issue")

        await self.audit.append(issued, AuditAction.INVOICE_ISSUED, actor, note=number, timestamp=now)
        logger.info("Issued invoice %s for settlement %s (center %s)", number, issued.reference, issued.center_id)
        return issued

    async def send_invoice(
        self,
        settlement_id: str,
        actor: str,
        recipient: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Settlement:
        """Send the invoice to the center, issuing it first if needed."""
        now = now or utcnow()
        settlement = await self.issue_invoice(settlement_id, actor, now=now)

        sent = await self.settlements.annotate_open(
            settlement.id,
            set_fields={"invoice_sent_at": now, "invoice_sent_to": recipient}
        )
        if sent is None:
            raise self._not_invoiceable(settlement, "is already paid", "invoice_send")

        note = settlement.invoice_number + (f" to {recipient}" if recipient else "")
        await self.audit.append(sent, AuditAction.INVOICE_SENT, actor, note=note, timestamp=now)
        logger.info("Sent invoice %s for settlement %s", sent.invoice_number, sent.reference)
        return sent

    async def send_reminder(
        self,
        settlement_id: str,
        actor: str,
        note: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Settlement:
        """Remind the center of an unpaid, invoiced settlement."""
        now = now or utcnow()
        settlement = await self._get(settlement_id, "reminder")
        self._ensure_open(settlement, "reminder")
        if settlement.invoice_sent_at is None:
            raise self._not_invoiceable(settlement, "has no invoice sent yet", "reminder")

        reminded = await self.settlements.annotate_open(
            settlement.id,
            conditions={"invoice_sent_at": {"$ne": None}},
            set_fields={"last_reminder_at": now},
            inc_fields={"reminder_count": 1}
        )
        if reminded is None:
            raise self._not_invoiceable(settlement, "is already paid", "reminder")

        await self.audit.append(reminded, AuditAction.REMINDER_SENT, actor, note=note, timestamp=now)
        logger.info(
            "Reminder %s sent for settlement %s (%s, due %s)",
            reminded.reminder_count, reminded.reference, reminded.status.value,
            reminded.due_date.date().isoformat()
        )
        return reminded

    # ===== PRIVATE HELPERS =====

    async def _get(self, settlement_id: str, stage: str) -> Settlement:
        settlement = await self.settlements.get(settlement_id)
        if settlement is None:
            raise SettlementNotFound(f"Settlement {settlement_id} not found", stage=stage)
        return settlement

    def _ensure_open(self, settlement: Settlement, stage: str) -> None:
        if not settlement.is_final:
            raise self._not_invoiceable(settlement, "is still a live projection", stage)
        if settlement.status == SettlementStatus.PAID:
            raise self._not_invoiceable(settlement, "is already paid", stage)

    @staticmethod
    def _not_invoiceable(settlement: Settlement, reason: str, stage: str) -> SettlementNotInvoiceable:
        return SettlementNotInvoiceable(
            f"Settlement {settlement.reference or settlement.id} {reason}",
            center_id=settlement.center_id,
            period_start=settlement.period_start,
            period_end=settlement.period_end,
            stage=stage
        )
