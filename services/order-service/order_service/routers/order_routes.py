# order_service/routers/order_routes.py
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request
from fastapi.responses import JSONResponse

from food_common.errors import NotFoundError, ValidationError
from food_common.events import RoutingKey
from food_common.idempotency import extract_idempotency_key, fingerprint
from food_common.schemas import OrderCreatedV1

from ..models.order import CancelRequest, Order, OrderCreate

router = APIRouter(prefix="/orders", tags=["orders"])
log = logging.getLogger("order.routes")


def _trace_id(request: Request) -> Optional[str]:
    return getattr(request.state, "trace_id", None) or request.headers.get("x-trace-id")


@router.post("", response_model=Order, status_code=201)
async def create_order(payload: OrderCreate, request: Request):
    dal = request.app.state.order_dal
    bus = request.app.state.bus

    order = await dal.create(payload)
    await bus.emit(
        RoutingKey.ORDER_CREATED,
        OrderCreatedV1(
            order_id=order.id,
            restaurant_id=order.restaurant_id,
            items=order.items,
            total=order.total,
        ),
        trace_id=_trace_id(request),
        event_id=f"created-{order.id}",
    )
    return order


@router.get("/{order_id}", response_model=Order)
async def get_order(order_id: str, request: Request):
    order = await request.app.state.order_dal.get(order_id)
    if not order:
        raise HTTPException(404, detail="Order not found")
    return order


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    request: Request,
    payload: Optional[CancelRequest] = None,
    idempotency_key: Optional[str] = Header(default=None, alias="idempotency-key"),
):
    """
    Cancel an order and start the compensation saga.

    With an `idempotency-key` header, a repeated identical request replays the
    first 200 response without touching the order or the bus again.
    """
    cancellation = request.app.state.cancellation
    cache = request.app.state.response_cache

    reason = payload.reason if payload else None
    key = extract_idempotency_key(idempotency_key)
    fp = fingerprint({"orderId": order_id, "reason": reason})

    if key:
        cached = cache.get(key)
        if cached:
            if cached.fingerprint != fp:
                raise HTTPException(422, detail="idempotency-key was already used with a different request")
            log.info("Cancellation already processed (idempotency hit) order_id=%s", order_id)
            return JSONResponse(cached.body, status_code=cached.status_code)

    try:
        result = await cancellation.cancel(order_id, reason, trace_id=_trace_id(request))
    except ValidationError as e:
        raise HTTPException(400, detail=e.message)
    except NotFoundError as e:
        raise HTTPException(404, detail=e.message)
    except Exception as e:
        log.exception("Error cancelling order order_id=%s", order_id)
        return JSONResponse({"error": "Internal server error", "message": str(e)}, status_code=500)

    body = result.body()
    if key:
        cache.set(key, fingerprint=fp, status_code=200, body=body)
    return body
