"""
SettlementStateMachine - Status transitions and their side effects.

    pending ──sweep──▶ overdue
       │                  │
       └──mark_paid──▶ paid ◀──mark_paid──┘

Every transition is a conditional update on the stored status, so racing
callers cannot both apply it, and each applied transition appends exactly
one audit entry. Nothing leaves `paid`.
"""

import logging
from datetime import datetime
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from tabsera.core.config import settings
from tabsera.models.audit import AuditAction
from tabsera.models.base import utcnow
from tabsera.models.review import SuspensionRequest
from tabsera.models.settlement import ALLOWED_TRANSITIONS, Settlement, SettlementStatus, can_transition
from tabsera.repositories.audit_repo import AuditRepository
from tabsera.repositories.review_repo import SuspensionRequestRepository
from tabsera.repositories.settlement_repo import SettlementRepository
from tabsera.services.contract_registry import ContractRegistry
from tabsera.services.settlement_generator import SettlementGenerator
from tabsera.utils.errors import IllegalStateTransition, NoActiveContract, SettlementEngineError, SettlementNotFound
from tabsera.utils.settlement_math import is_past_due

logger = logging.getLogger(__name__)

# Extra rows read past the threshold when measuring an overdue run
SUSPENSION_LOOKBACK = 12


class SettlementStateMachine:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.settlements = SettlementRepository(db)
        self.audit = AuditRepository(db)
        self.registry = ContractRegistry(db)
        self.suspensions = SuspensionRequestRepository(db)
        self.generator = SettlementGenerator(db)

    async def sweep_overdue(self, now: Optional[datetime] = None, actor: Optional[str] = None) -> List[Settlement]:
        """
        Move every pending settlement past its due day to overdue.

        Returns the settlements this call transitioned. Rerunning is a no-op
        for rows already moved by an earlier or concurrent sweep.
        """
        now = now or utcnow()
        actor = actor or settings.SYSTEM_ACTOR
        transitioned = []

        for settlement in await self.settlements.list_past_due(now):
            if not settlement.is_final:
                settlement = await self._finalize(settlement, actor, now)
                if settlement.status != SettlementStatus.PENDING:
                    continue

            moved = await self.settlements.transition(
                settlement.id, [SettlementStatus.PENDING], SettlementStatus.OVERDUE
            )
            if moved is None:
                continue

            await self.audit.append(
                moved, AuditAction.OVERDUE, actor,
                note=f"due {moved.due_date.date().isoformat()}", timestamp=now
            )
            logger.warning(
                "Settlement %s for center %s (%s) is overdue since %s",
                moved.reference, moved.center_id, moved.period_label, moved.due_date.date().isoformat()
            )
            transitioned.append(moved)

        for center_id in sorted({settlement.center_id for settlement in transitioned}):
            await self.check_suspension(center_id, now)

        return transitioned

    async def mark_paid(
        self,
        settlement_id: str,
        payment_reference: str,
        actor: str,
        method: Optional[str] = None,
        paid_at: Optional[datetime] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Settlement:
        """
        Record the settlement payment (pending → paid, overdue → paid).

        Retrying with the same reference on a paid settlement returns it
        unchanged; any other request on a paid settlement is rejected.
        """
        now = now or utcnow()
        payment_reference = (payment_reference or "").strip()

        settlement = await self.settlements.get(settlement_id)
        if settlement is None:
            raise SettlementNotFound(f"Settlement {settlement_id} not found", stage="mark_paid")
        context = {
            "center_id": settlement.center_id,
            "period_start": settlement.period_start,
            "period_end": settlement.period_end,
        }
        if not payment_reference:
            raise SettlementEngineError("A payment reference is required", stage="mark_paid", **context)

        if settlement.status == SettlementStatus.PAID:
            if settlement.payment_reference == payment_reference:
                return settlement
            raise IllegalStateTransition(settlement.status.value, SettlementStatus.PAID.value, **context)

        self._ensure_transition(settlement, SettlementStatus.PAID)
        moved = await self.settlements.transition(
            settlement.id,
            [status for status, targets in ALLOWED_TRANSITIONS.items() if SettlementStatus.PAID in targets],
            SettlementStatus.PAID,
            extra={
                "paid_at": paid_at or now,
                "payment_reference": payment_reference,
                "payment_method": method,
                "payment_note": note,
                "paid_by": actor
            }
        )
        if moved is None:
            # Paid by someone else between our read and write
            current = await self.settlements.get(settlement_id)
            if current.status == SettlementStatus.PAID and current.payment_reference == payment_reference:
                return current
            raise IllegalStateTransition(current.status.value, SettlementStatus.PAID.value, **context)

        await self.audit.append(
            moved, AuditAction.PAID, actor,
            note=f"ref {payment_reference}" + (f": {note}" if note else ""), timestamp=now
        )
        logger.info(
            "Settlement %s for center %s marked paid by %s (ref %s)",
            moved.reference, moved.center_id, actor, payment_reference
        )
        return moved

    async def check_suspension(self, center_id: str, now: Optional[datetime] = None) -> Optional[SuspensionRequest]:
        """
        Raise ContractSuspensionRequested when the center's latest run of
        consecutive overdue settlements reaches its contract threshold.
        """
        now = now or utcnow()
        try:
            contract = await self.registry.get_active_contract(center_id, now)
        except NoActiveContract:
            logger.warning("No active contract for center %s; skipping suspension check", center_id)
            return None

        threshold = contract.max_consecutive_overdue
        recent = await self.settlements.recent_closed_for_center(center_id, threshold + SUSPENSION_LOOKBACK)

        run = []
        for settlement in recent:
            if not run and settlement.status == SettlementStatus.PENDING and not is_past_due(settlement.due_date, now):
                # Not due yet; the run is measured from the latest due settlement
                continue
            if settlement.status != SettlementStatus.OVERDUE:
                break
            run.append(settlement)

        if len(run) < threshold:
            return None

        request = SuspensionRequest(
            center_id=center_id,
            contract_id=contract.id,
            consecutive_overdue=len(run),
            threshold=threshold,
            trigger_settlement_id=run[0].id,
            settlement_ids=[settlement.id for settlement in run],
            requested_at=now
        )
        if await self.suspensions.record(request):
            logger.warning(
                "ContractSuspensionRequested for center %s: %s consecutive overdue settlements (threshold %s)",
                center_id, len(run), threshold
            )
            return request
        return None

    # ===== PRIVATE HELPERS =====

    @staticmethod
    def _ensure_transition(settlement: Settlement, requested: SettlementStatus) -> None:
        if not can_transition(settlement.status, requested):
            raise IllegalStateTransition(
                SettlementStatus(settlement.status).value,
                requested.value,
                center_id=settlement.center_id,
                period_start=settlement.period_start,
                period_end=settlement.period_end
            )

    async def _finalize(self, settlement: Settlement, actor: str, now: datetime) -> Settlement:
        """Freeze a live row before it goes overdue; keep the old figures if that fails."""
        try:
            return await self.generator.generate(
                settlement.center_id, settlement.period_start, settlement.period_end,
                actor=actor, now=now
            )
        except SettlementEngineError as error:
            logger.warning("Could not finalize %s before overdue sweep: %s", settlement.reference, error)
            return settlement
