from fastapi import APIRouter, HTTPException, Request

from ..models.delivery import Delivery

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


@router.get("/{order_id}", response_model=Delivery)
async def get_delivery(order_id: str, request: Request):
    delivery = await request.app.state.delivery_dal.get_by_order(order_id)
    if not delivery:
        raise HTTPException(404, detail="Delivery not found")
    return delivery
