# services/order-service/order_service/main.py
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from food_common.correlation import TraceIdMiddleware
from food_common.health import build_health_router
from food_common.idempotency import ResponseCache
from food_common.logging_conf import setup_logging
from food_common.runtime import ServiceRuntime

from .dal.order_dal import OrderDAL
from .events.consumers import OrderConsumers
from .routers.order_routes import router as order_router
from .services.cancellation import OrderCancellation
from .settings import settings

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("order")

app = FastAPI(
    title="Food – Order Service",
    version="0.1.0",
    default_response_class=ORJSONResponse,
)

# Trace-id middleware (reads/echoes x-trace-id, feeds the log filter)
app.add_middleware(TraceIdMiddleware)

# Routes
app.include_router(build_health_router(settings.SERVICE_NAME))
app.include_router(order_router)


@app.on_event("startup")
async def startup():
    runtime = await ServiceRuntime(settings).start()

    dal = OrderDAL(runtime.db)
    await dal.ensure_indexes()
    cancellation = OrderCancellation(dal, runtime.bus)
    await runtime.subscribe(OrderConsumers(dal, runtime.guard, cancellation).subscriptions())

    app.state.order_dal = dal
    app.state.bus = runtime.bus
    app.state.cancellation = cancellation
    app.state.response_cache = ResponseCache(ttl_seconds=settings.IDEMPOTENCY_TTL_SECONDS)
    app.state.runtime = runtime
    log.info("startup complete")


@app.on_event("shutdown")
async def shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.stop()


if __name__ == "__main__":
    uvicorn.run(
        "order_service.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=True,
    )
