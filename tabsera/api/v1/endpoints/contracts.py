from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from tabsera.api.v1.errors import http_error
from tabsera.db.mongo import get_db
from tabsera.models.base import utcnow
from tabsera.schemas.contract import ContractCreate, ContractResponse, ContractUpdate, as_datetime
from tabsera.services.contract_registry import ContractRegistry
from tabsera.utils.errors import ContractInvariantViolation, NoActiveContract

router = APIRouter()


@router.post("", response_model=ContractResponse, status_code=status.HTTP_201_CREATED)
async def create_contract(payload: ContractCreate, db = Depends(get_db)):
    """Register a contract (contract-admin collaborator)."""
    registry = ContractRegistry(db)
    try:
        contract = await registry.create_contract(payload.to_model())
    except ContractInvariantViolation as error:
        raise http_error(error)
    return ContractResponse.from_model(contract)


@router.get("", response_model=List[ContractResponse])
async def list_contracts(center_id: str, db = Depends(get_db)):
    registry = ContractRegistry(db)
    return [ContractResponse.from_model(contract) for contract in await registry.list_contracts(center_id)]


@router.get("/active/{center_id}", response_model=ContractResponse)
async def get_active_contract(center_id: str, as_of: Optional[date] = None, db = Depends(get_db)):
    """The contract governing a center on a given day (default today)."""
    registry = ContractRegistry(db)
    day = as_datetime(as_of) if as_of else utcnow()
    try:
        contract = await registry.get_active_contract(center_id, day)
    except NoActiveContract as error:
        raise http_error(error, status.HTTP_404_NOT_FOUND)
    return ContractResponse.from_model(contract)


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(contract_id: str, db = Depends(get_db)):
    contract = await ContractRegistry(db).get_contract(contract_id)
    if not contract:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")
    return ContractResponse.from_model(contract)


@router.patch("/{contract_id}", response_model=ContractResponse)
async def update_contract(contract_id: str, payload: ContractUpdate, db = Depends(get_db)):
    registry = ContractRegistry(db)
    try:
        contract = await registry.update_contract(contract_id, payload.to_changes())
    except ContractInvariantViolation as error:
        raise http_error(error)
    if not contract:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Contract not found")
    return ContractResponse.from_model(contract)
