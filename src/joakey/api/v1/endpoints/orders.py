# src/joakey/api/v1/endpoints/orders.py
"""Order summary endpoints for the Joakey API."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from joakey.api.v1.dependencies import CurrentParticipantDep, SessionDep
from joakey.schemas.order import OrderSummaryResponse
from joakey.services.orders import build_order_summary

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/summary", response_model=OrderSummaryResponse)
async def get_order_summary(
    current_participant: CurrentParticipantDep,
    db: SessionDep,
    jockey_id: str = Query(...),
    game: str = Query(...),
    from_rank: str = Query(...),
    to_rank: str = Query(...),
    price: str = Query(...),
) -> OrderSummaryResponse:
    """Return the checkout summary and payment instructions for a boosting order."""
    try:
        summary = build_order_summary(
            db,
            jockey_id=jockey_id,
            game=game,
            from_rank=from_rank,
            to_rank=to_rank,
            price=price,
        )
    except ValueError as err:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(err)) from err
    except LookupError as err:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(err)) from err
    return OrderSummaryResponse.model_validate(summary)
