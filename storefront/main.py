import asyncio
from contextlib import asynccontextmanager, suppress
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.api.v1.routes_admin import router as admin_router
from storefront.api.v1.routes_checkout import router as orders_router
from storefront.api.v1.routes_payments import router as payments_router
from storefront.core.config import settings
from storefront.core.errors import ErrorKind, StorefrontError
from storefront.core.logging import configure_logging
from storefront.db.base import engine, init_models
from storefront.domain.payments.gateway import FakeGateway, PaymentGateway
from storefront.jobs.dispatcher import JobDispatcher
from storefront.jobs.queue.base import JobQueue
from storefront.jobs.registry import build_handler_registry, build_queue

logger = structlog.get_logger(__name__)

ERROR_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.INSUFFICIENT_STOCK: 400,
    ErrorKind.PRODUCT_UNAVAILABLE: 400,
    ErrorKind.INVALID_TRANSITION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
}


async def storefront_error_handler(request: Request, exc: StorefrontError):
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.message, code=exc.kind.value)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation failed",
            "code": ErrorKind.VALIDATION.value,
            "details": [
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in exc.errors()
            ],
        },
    )


def create_app(
    queue: Optional[JobQueue] = None,
    gateway: Optional[PaymentGateway] = None,
    run_dispatcher: Optional[bool] = None,
) -> FastAPI:
    """Build the HTTP app.

    With the memory backend the dispatcher has to live in this process, so
    one is started by default; with the database backend jobs are left to
    ``storefront-worker``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        if settings.DB_CREATE_TABLES:
            await init_models(engine)

        app.state.queue = queue or build_queue(settings)
        app.state.gateway = gateway or FakeGateway()

        dispatcher = None
        dispatcher_task = None
        in_process = app.state.queue.notifies if run_dispatcher is None else run_dispatcher
        if in_process:
            dispatcher = JobDispatcher(
                app.state.queue,
                build_handler_registry(settings),
                wait_time=settings.QUEUE_WAIT_TIME,
                backoff=settings.DISPATCHER_BACKOFF,
            )
            dispatcher_task = asyncio.create_task(dispatcher.run())

        logger.info(
            "Storefront API started",
            environment=settings.ENVIRONMENT,
            queue_backend=settings.QUEUE_BACKEND,
            in_process_dispatcher=in_process,
        )
        try:
            yield
        finally:
            if dispatcher is not None:
                dispatcher.stop()
                with suppress(asyncio.CancelledError):
                    await dispatcher_task
            await app.state.queue.close()
            logger.info("Storefront API stopped")

    app = FastAPI(title="Storefront fulfillment API", lifespan=lifespan)

    app.add_exception_handler(StorefrontError, storefront_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(orders_router)
    app.include_router(payments_router)
    app.include_router(admin_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
