from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Response

from tabsera.api.v1.errors import http_error
from tabsera.db.mongo import get_db
from tabsera.models.settlement import SettlementStatus
from tabsera.schemas.contract import as_datetime
from tabsera.schemas.settlement import (
    AuditEntryResponse,
    BatchReportResponse,
    BatchRequest,
    GenerateRequest,
    InvoiceRequest,
    MarkPaidRequest,
    ReminderRequest,
    SettlementResponse,
    SweepRequest,
)
from tabsera.services.collection_tracker import CollectionReport, CollectionTracker
from tabsera.services.settlement_batch import SettlementBatch
from tabsera.services.settlement_generator import SettlementGenerator
from tabsera.services.settlement_invoicing import SettlementInvoicing
from tabsera.services.settlement_query import SettlementQueryService
from tabsera.services.settlement_state import SettlementStateMachine
from tabsera.utils.errors import SettlementEngineError

router = APIRouter()


@router.post("/generate", response_model=SettlementResponse)
async def generate_settlement(payload: GenerateRequest, db = Depends(get_db)):
    """Generate (or fetch) the settlement of one center for one period."""
    generator = SettlementGenerator(db)
    try:
        settlement = await generator.generate(
            payload.center_id,
            as_datetime(payload.period_start),
            as_datetime(payload.period_end),
            actor=payload.actor
        )
    except SettlementEngineError as error:
        raise http_error(error)
    return SettlementResponse.from_model(settlement)


@router.post("/batch", response_model=BatchReportResponse)
async def run_batch(payload: BatchRequest, db = Depends(get_db)):
    """Close the latest finished period for every center; failures are reported, not raised."""
    report = await SettlementBatch(db).run(
        as_of=payload.as_of, center_ids=payload.center_ids, actor=payload.actor
    )
    return BatchReportResponse.from_report(report)


@router.post("/sweep-overdue", response_model=List[SettlementResponse])
async def sweep_overdue(payload: SweepRequest, db = Depends(get_db)):
    """Move pending settlements past their due day to overdue."""
    moved = await SettlementStateMachine(db).sweep_overdue(now=payload.now, actor=payload.actor)
    return [SettlementResponse.from_model(settlement) for settlement in moved]


@router.get("", response_model=List[SettlementResponse])
async def list_settlements(
    center_id: Optional[str] = None,
    period_start: Optional[date] = None,
    status: Optional[SettlementStatus] = None,
    skip: int = 0,
    limit: int = 100,
    db = Depends(get_db)
):
    settlements = await SettlementQueryService(db).list_settlements(
        center_id=center_id,
        period_start=as_datetime(period_start) if period_start else None,
        status=status,
        skip=skip,
        limit=limit
    )
    return [SettlementResponse.from_model(settlement) for settlement in settlements]


@router.get("/overdue", response_model=List[SettlementResponse])
async def list_overdue(center_id: Optional[str] = None, db = Depends(get_db)):
    settlements = await SettlementQueryService(db).list_overdue(center_id=center_id)
    return [SettlementResponse.from_model(settlement) for settlement in settlements]


@router.get("/export.csv")
async def export_settlements(
    center_id: Optional[str] = None,
    period_start: Optional[date] = None,
    status: Optional[SettlementStatus] = None,
    db = Depends(get_db)
):
    content = await SettlementQueryService(db).export_csv(
        center_id=center_id,
        period_start=as_datetime(period_start) if period_start else None,
        status=status
    )
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="settlements.csv"'}
    )


@router.get("/{settlement_id}", response_model=SettlementResponse)
async def get_settlement(settlement_id: str, db = Depends(get_db)):
    try:
        settlement = await SettlementQueryService(db).get(settlement_id)
    except SettlementEngineError as error:
        raise http_error(error)
    return SettlementResponse.from_model(settlement)


@router.get("/{settlement_id}/audit", response_model=List[AuditEntryResponse])
async def get_audit_trail(settlement_id: str, db = Depends(get_db)):
    try:
        entries = await SettlementQueryService(db).audit_trail(settlement_id)
    except SettlementEngineError as error:
        raise http_error(error)
    return [AuditEntryResponse.from_model(entry) for entry in entries]


@router.post("/{settlement_id}/mark-paid", response_model=SettlementResponse)
async def mark_paid(settlement_id: str, payload: MarkPaidRequest, db = Depends(get_db)):
    """Record the settlement payment (pending/overdue → paid)."""
    try:
        settlement = await SettlementStateMachine(db).mark_paid(
            settlement_id,
            payload.payment_reference,
            payload.actor,
            method=payload.method,
            paid_at=payload.paid_at,
            note=payload.note
        )
    except SettlementEngineError as error:
        raise http_error(error)
    return SettlementResponse.from_model(settlement)


@router.post("/{settlement_id}/invoice", response_model=SettlementResponse)
async def issue_invoice(settlement_id: str, payload: InvoiceRequest, db = Depends(get_db)):
    """Issue the invoice for a final, unpaid settlement (idempotent)."""
    try:
        settlement = await SettlementInvoicing(db).issue_invoice(settlement_id, payload.actor)
    except SettlementEngineError as error:
        raise http_error(error)
    return SettlementResponse.from_model(settlement)


@router.post("/{settlement_id}/invoice/send", response_model=SettlementResponse)
async def send_invoice(settlement_id: str, payload: InvoiceRequest, db = Depends(get_db)):
    try:
        settlement = await SettlementInvoicing(db).send_invoice(
            settlement_id, payload.actor, recipient=payload.recipient
        )
    except SettlementEngineError as error:
        raise http_error(error)
    return SettlementResponse.from_model(settlement)


@router.post("/{settlement_id}/remind", response_model=SettlementResponse)
async def send_reminder(settlement_id: str, payload: ReminderRequest, db = Depends(get_db)):
    """Remind the center of an invoiced, unpaid settlement."""
    try:
        settlement = await SettlementInvoicing(db).send_reminder(settlement_id, payload.actor, note=payload.note)
    except SettlementEngineError as error:
        raise http_error(error)
    return SettlementResponse.from_model(settlement)


@router.get("/{settlement_id}/collection-report", response_model=CollectionReport)
async def collection_report(settlement_id: str, db = Depends(get_db)):
    """Late collections against a frozen settlement (advisory only)."""
    try:
        return await CollectionTracker(db).collection_report(settlement_id)
    except SettlementEngineError as error:
        raise http_error(error)
