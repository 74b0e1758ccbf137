# services/notification-service/notification_service/main.py
import logging

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from food_common.correlation import TraceIdMiddleware
from food_common.health import build_health_router
from food_common.logging_conf import setup_logging
from food_common.runtime import ServiceRuntime

from .dal.notification_dal import NotificationDAL
from .events.consumers import NotificationConsumers
from .notifier import Notifier
from .routers.notification_routes import router as notification_router
from .settings import settings
from .websocket_manager import websocket_manager

setup_logging(settings.LOG_LEVEL)
log = logging.getLogger("notification")

app = FastAPI(
    title="Food – Notification Service",
    version="0.1.0",
    default_response_class=ORJSONResponse,
)

# CORS (tighten in prod once the client origin is known)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.WS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TraceIdMiddleware)

app.include_router(build_health_router(settings.SERVICE_NAME))
app.include_router(notification_router)


@app.websocket(settings.WS_PATH)
async def ws_endpoint(websocket: WebSocket):
    """Clients receive every notification as JSON as soon as it is stored."""
    await websocket_manager.connect(websocket)
    try:
        # Keep-alive loop; clients are not expected to send anything
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        log.info("WebSocket client disconnected")
    finally:
        await websocket_manager.disconnect(websocket)


@app.on_event("startup")
async def startup():
    runtime = await ServiceRuntime(settings).start()

    dal = NotificationDAL(runtime.db)
    await dal.ensure_indexes()
    notifier = Notifier(dal, websocket_manager)
    await runtime.subscribe(NotificationConsumers(notifier, runtime.guard).subscriptions())

    app.state.notification_dal = dal
    app.state.runtime = runtime
    log.info("startup complete ws_path=%s", settings.WS_PATH)


@app.on_event("shutdown")
async def shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime:
        await runtime.stop()


if __name__ == "__main__":
    uvicorn.run("notification_service.main:app", host="0.0.0.0", port=settings.PORT, reload=True)
