from fastapi import APIRouter, Request


def build_health_router(service_name: str) -> APIRouter:
    router = APIRouter(tags=["health"])

    @router.get("/healthz")
    async def healthz():
        return {"status": "ok", "service": service_name}

    @router.get("/readyz")
    async def readyz(request: Request):
        return {"ready": getattr(request.app.state, "runtime", None) is not None}

    return router
