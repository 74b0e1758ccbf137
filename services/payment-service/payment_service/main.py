# services/payment-service/payment_service/main.py
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse

from food_common.correlation import TraceIdMiddleware
from food_common.health import build_health_router
from food_common.logging_conf import setup_logging
from food_common.runtime import ServiceRuntime

from .dal.payment_dal import PaymentDAL
from .events.consumers import PaymentConsumers
from .gateway import build_gateway
from .routers.payment_routes import router as payment_router
from .settings import settings

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("payment")

app = FastAPI(
    title="Food – Payment Service",
    version="0.1.0",
    default_response_class=ORJSONResponse,
)
app.add_middleware(TraceIdMiddleware)

app.include_router(build_health_router(settings.SERVICE_NAME))
app.include_router(payment_router)


@app.on_event("startup")
async def startup():
    runtime = await ServiceRuntime(settings).start()

    dal = PaymentDAL(runtime.db)
    await dal.ensure_indexes()
    gateway = build_gateway(settings)
    log.info("payment gateway=%s", type(gateway.gateway).__name__)
    await runtime.subscribe(PaymentConsumers(dal, runtime.guard, runtime.bus, gateway).subscriptions())

    app.state.payment_dal = dal
    app.state.gateway = gateway
    app.state.runtime = runtime
    log.info("startup complete")


@app.on_event("shutdown")
async def shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.stop()


if __name__ == "__main__":
    uvicorn.run("payment_service.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
