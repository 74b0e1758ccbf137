from fastapi import APIRouter, HTTPException, Request

from ..models.payment import Payment

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/{order_id}", response_model=Payment)
async def get_payment(order_id: str, request: Request):
    payment = await request.app.state.payment_dal.get_by_order(order_id)
    if not payment:
        raise HTTPException(404, detail="Payment not found")
    return payment
