from fastapi import APIRouter, HTTPException, Request

from ..models.kitchen_order import KitchenOrder

router = APIRouter(prefix="/kitchen-orders", tags=["kitchen"])


@router.get("/{order_id}", response_model=KitchenOrder)
async def get_kitchen_order(order_id: str, request: Request):
    ko = await request.app.state.kitchen_order_dal.get_by_order(order_id)
    if not ko:
        raise HTTPException(404, detail="Kitchen order not found")
    return ko
