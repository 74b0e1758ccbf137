# services/kitchen-service/kitchen_service/main.py
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from food_common.correlation import TraceIdMiddleware
from food_common.health import build_health_router
from food_common.logging_conf import setup_logging
from food_common.runtime import ServiceRuntime

from .dal.kitchen_order_dal import KitchenOrderDAL
from .events.consumers import KitchenConsumers
from .routers.kitchen_routes import router as kitchen_router
from .settings import settings

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("kitchen")

app = FastAPI(
    title="Food – Kitchen Service",
    version="0.1.0",
    default_response_class=ORJSONResponse,
)
app.add_middleware(TraceIdMiddleware)

app.include_router(build_health_router(settings.SERVICE_NAME))
app.include_router(kitchen_router)


@app.on_event("startup")
async def startup():
    runtime = await ServiceRuntime(settings).start()

    dal = KitchenOrderDAL(runtime.db)
    await dal.ensure_indexes()
    await runtime.subscribe(KitchenConsumers(dal, runtime.guard, runtime.bus).subscriptions())

    app.state.kitchen_order_dal = dal
    app.state.runtime = runtime
    log.info("startup complete")


@app.on_event("shutdown")
async def shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.stop()


if __name__ == "__main__":
    uvicorn.run("kitchen_service.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
