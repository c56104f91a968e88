from fastapi import APIRouter
from tabsera.api.v1.endpoints import centers, contracts, exchange_rates, payments, review, settlements

api_router = APIRouter()

api_router.include_router(contracts.router, prefix="/contracts", tags=["contracts"])
api_router.include_router(exchange_rates.router, prefix="/exchange-rates", tags=["exchange-rates"])
api_router.include_router(payments.router, prefix="/payments", tags=["payments"])
api_router.include_router(settlements.router, prefix="/settlements", tags=["settlements"])
api_router.include_router(centers.router, prefix="/centers", tags=["centers"])
api_router.include_router(review.router, tags=["operations"])
