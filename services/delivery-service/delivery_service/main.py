# services/delivery-service/delivery_service/main.py
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from food_common.correlation import TraceIdMiddleware
from food_common.health import build_health_router
from food_common.logging_conf import setup_logging
from food_common.runtime import ServiceRuntime

from .dal.delivery_dal import DeliveryDAL
from .events.consumers import DeliveryConsumers
from .routers.delivery_routes import router as delivery_router
from .settings import settings

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("delivery")

app = FastAPI(
    title="Food – Delivery Service",
    version="0.1.0",
    default_response_class=ORJSONResponse,
)
app.add_middleware(TraceIdMiddleware)

app.include_router(build_health_router(settings.SERVICE_NAME))
app.include_router(delivery_router)


@app.on_event("startup")
async def startup():
    runtime = await ServiceRuntime(settings).start()

    dal = DeliveryDAL(runtime.db)
    await dal.ensure_indexes()
    consumers = DeliveryConsumers(dal, runtime.guard, runtime.bus, settings.DRIVER_POOL)
    await runtime.subscribe(consumers.subscriptions())

    app.state.delivery_dal = dal
    app.state.runtime = runtime
    log.info("startup complete drivers=%d", len(settings.DRIVER_POOL))


@app.on_event("shutdown")
async def shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.stop()


if __name__ == "__main__":
    uvicorn.run("delivery_service.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
