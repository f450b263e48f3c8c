import asyncio
import contextlib
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from smartdesk.api.routes import sla, tickets
from smartdesk.config import settings
from smartdesk.exceptions import SmartDeskError
from smartdesk.tasks.sla_monitor import monitor_sla


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    sla_task = None
    if settings.sla_monitor_enabled:
        sla_task = asyncio.create_task(monitor_sla())
    yield
    if sla_task is not None:
        sla_task.cancel()
        try:
            await sla_task
        except asyncio.CancelledError:
            pass


async def handle_smartdesk_error(request: Request, exc: SmartDeskError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.details},
    )


def create_app() -> FastAPI:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="SmartDesk", version="0.1.0", lifespan=lifespan)
    app.add_exception_handler(SmartDeskError, handle_smartdesk_error)

    @app.get("/api/v1/health")
    async def health_check():
        return {"status": "ok"}

    app.include_router(tickets.router, prefix="/api/v1/tickets", tags=["tickets"])
    app.include_router(sla.router, prefix="/api/v1/sla", tags=["sla"])

    return app


app = create_app()
