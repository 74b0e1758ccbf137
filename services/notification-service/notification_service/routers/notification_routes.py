from typing import List

from fastapi import APIRouter, Query, Request

from ..models.notification import Notification

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=List[Notification])
async def list_notifications(request: Request, order_id: str = Query(..., alias="orderId"), limit: int = Query(100, ge=1, le=500)):
    return await request.app.state.notification_dal.list_by_order(order_id, limit=limit)
