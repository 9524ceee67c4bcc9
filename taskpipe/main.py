import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from redis.asyncio import Redis

from taskpipe.api.errors import register_exception_handlers
from taskpipe.api.v1.router import router as v1_router
from taskpipe.config import settings
from taskpipe.services.cache_service import CacheService
from taskpipe.worker.broker import make_connection, make_queue
from taskpipe.worker.dispatch import TaskPublisher

logger = logging.getLogger("taskpipe.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    connection = make_connection()

    app.state.cache = CacheService(redis, ttl_seconds=settings.cache_ttl_seconds)
    app.state.publisher = TaskPublisher(connection, make_queue())
    logger.info("taskpipe api starting: queue=%s", settings.task_queue_name)

    try:
        yield
    finally:
        connection.release()
        await redis.aclose()


def create_app() -> FastAPI:
    app = FastAPI(title="taskpipe Task API", lifespan=lifespan)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        """Attach a request id to every response and log a compact access line.

        - If the caller provides X-Request-ID, we reuse it.
        - Otherwise we generate a UUID4.
        """

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "access request_id=%s method=%s path=%s status=%s duration_ms=%.2f",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response

    register_exception_handlers(app)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(v1_router, prefix="/api/v1")
    return app


app = create_app()
