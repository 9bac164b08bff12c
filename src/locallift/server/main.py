import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from locallift.main.config import get_settings
from locallift.main.logging import get_logger
from locallift.server.dependencies.lifespan import lifespan
from locallift.server.exception_handlers import add_exception_handlers
from locallift.server.routers import router as api_router

logger = get_logger(__name__)


def get_application():
    app = FastAPI(
        title="Locallift",
        version=get_settings().app_version,
        lifespan=lifespan,
    )

    app.include_router(api_router, prefix=get_settings().api_prefix)

    # Add handlers of all errors except 500
    add_exception_handlers(app)

    @app.exception_handler(500)
    async def custom_http_500_exception_handler(request, exc):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Something went wrong"})

    @app.get("/api/healthz")
    async def get_healthz():
        container = getattr(app.state, "container", None)
        running = (
            {
                workload.value: controller.is_running()
                for workload, controller in container.batch_controllers().items()
            }
            if container is not None
            else {}
        )
        return {"status": "OK", "running_batches": running}

    return app


app = get_application()


def start():
    uvicorn.run(
        "locallift.server.main:app",
        host="0.0.0.0",
        port=8123,
        reload=get_settings().dev,
        reload_dirs="./src/",
    )
