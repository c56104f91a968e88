from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from tabsera.db.mongo import get_db
from tabsera.repositories.review_repo import ReviewQueueRepository, SuspensionRequestRepository
from tabsera.schemas.review import ResolveRequest, ReviewItemResponse, SuspensionRequestResponse

router = APIRouter()


@router.get("/review-queue", response_model=List[ReviewItemResponse])
async def list_review_queue(center_id: Optional[str] = None, db = Depends(get_db)):
    """Open manual-review items from failed settlement runs."""
    items = await ReviewQueueRepository(db).list_open(center_id)
    return [ReviewItemResponse.from_model(item) for item in items]


@router.post("/review-queue/{item_id}/resolve", response_model=ReviewItemResponse)
async def resolve_review_item(item_id: str, payload: ResolveRequest, db = Depends(get_db)):
    item = await ReviewQueueRepository(db).resolve(item_id, payload.actor)
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review item not found")
    return ReviewItemResponse.from_model(item)


@router.get("/suspension-requests", response_model=List[SuspensionRequestResponse])
async def list_suspension_requests(consumed: Optional[bool] = None, db = Depends(get_db)):
    """ContractSuspensionRequested signals for the contract collaborator."""
    requests = await SuspensionRequestRepository(db).list(consumed)
    return [SuspensionRequestResponse.from_model(request) for request in requests]


@router.post("/suspension-requests/{request_id}/consume", response_model=SuspensionRequestResponse)
async def consume_suspension_request(request_id: str, db = Depends(get_db)):
    request = await SuspensionRequestRepository(db).mark_consumed(request_id)
    if not request:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Suspension request not found")
    return SuspensionRequestResponse.from_model(request)
