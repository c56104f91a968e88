from fastapi import HTTPException, status

from tabsera.utils.errors import SettlementEngineError

STATUS_BY_CODE = {
    "contract_invariant_violation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "no_active_contract": status.HTTP_409_CONFLICT,
    "rate_unavailable": status.HTTP_409_CONFLICT,
    "invalid_settlement_period": status.HTTP_400_BAD_REQUEST,
    "illegal_state_transition": status.HTTP_409_CONFLICT,
    "settlement_not_found": status.HTTP_404_NOT_FOUND,
    "settlement_not_invoiceable": status.HTTP_409_CONFLICT,
    "center_timeout": status.HTTP_504_GATEWAY_TIMEOUT,
}


def http_error(error: SettlementEngineError, status_code: int | None = None) -> HTTPException:
    """Translate an engine error into an HTTP error carrying its context."""
    return HTTPException(
        status_code=status_code or STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=error.to_dict()
    )
