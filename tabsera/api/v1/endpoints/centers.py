from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status

from tabsera.api.v1.errors import http_error
from tabsera.db.mongo import get_db
from tabsera.schemas.contract import as_datetime
from tabsera.services.collection_tracker import CollectionProjection, CollectionTracker
from tabsera.services.settlement_query import CenterSettlementSummary, SettlementQueryService
from tabsera.utils.errors import NoActiveContract, SettlementEngineError

router = APIRouter()


@router.get("/{center_id}/collection", response_model=CollectionProjection)
async def get_collection(
    center_id: str,
    period_start: Optional[date] = None,
    period_end: Optional[date] = None,
    db = Depends(get_db)
):
    """
    Live collection progress. Defaults to the contract period containing
    today; pass both bounds to project a specific period.
    """
    tracker = CollectionTracker(db)
    try:
        if period_start and period_end:
            return await tracker.project(center_id, as_datetime(period_start), as_datetime(period_end))
        return await tracker.current_period(center_id)
    except NoActiveContract as error:
        raise http_error(error, status.HTTP_404_NOT_FOUND)
    except SettlementEngineError as error:
        raise http_error(error)


@router.get("/{center_id}/settlement-summary", response_model=CenterSettlementSummary)
async def get_settlement_summary(center_id: str, db = Depends(get_db)):
    return await SettlementQueryService(db).center_summary(center_id)
