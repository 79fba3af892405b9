from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import asyncio
import logging
import time

from codepair.api.deps import get_container
from codepair.api.interviews import router as interviews_router
from codepair.api.questions import router as questions_router
from codepair.api.ws_session import router as session_ws_router
from codepair.auth import get_caller_id
from codepair.core import config
from codepair.errors import register_exception_handlers
from codepair.services.container import ServiceContainer
from codepair.system_metrics import get_metrics_snapshot, set_metric

logging.basicConfig(
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    level=logging.INFO,
)

logger = logging.getLogger("codepair.main")


def _get_allowed_origins() -> list[str]:
    raw = config.CORS_ALLOW_ORIGINS
    if not raw:
        return [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]
    return [item.strip() for item in raw.split(",") if item.strip()]


class FixedWindowRateLimiter:
    def __init__(self, window_sec: int, max_requests: int):
        self.window_sec = window_sec
        self.max_requests = max_requests
        self._lock = asyncio.Lock()
        self._buckets: dict[str, dict[str, float]] = {}

    async def check(self, identity: str, now_ts: float) -> tuple[bool, int]:
        async with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                self._buckets[identity] = {"window_start": now_ts, "count": 1}
                return False, 0

            elapsed = now_ts - float(bucket.get("window_start") or now_ts)
            if elapsed >= self.window_sec:
                bucket["window_start"] = now_ts
                bucket["count"] = 1
                return False, 0

            count = int(bucket.get("count") or 0)
            if count >= self.max_requests:
                return True, max(1, int(self.window_sec - elapsed))

            bucket["count"] = count + 1

            if len(self._buckets) > 10000:
                stale_keys = [
                    key
                    for key, value in self._buckets.items()
                    if now_ts - float(value.get("window_start") or now_ts) > (self.window_sec * 2)
                ]
                for key in stale_keys[:3000]:
                    self._buckets.pop(key, None)

            return False, 0


def _request_identity(request: Request) -> str:
    forwarded = str(request.headers.get("x-forwarded-for") or "").strip()
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return str(request.client.host)
    return "unknown"


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    app = FastAPI(title="CodePair Interviews")
    app.state.container = container or ServiceContainer()
    app.state.background_tasks = []
    allowed_origins = _get_allowed_origins()
    rate_limiter = FixedWindowRateLimiter(config.RATE_LIMIT_WINDOW_SEC, config.RATE_LIMIT_MAX_REQUESTS)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        allow_credentials=False,
    )
    register_exception_handlers(app)

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):
        if not config.RATE_LIMIT_ENABLED:
            return await call_next(request)

        path = request.url.path
        if request.method == "OPTIONS" or path == "/healthz" or path.startswith(("/docs", "/redoc", "/openapi.json")):
            return await call_next(request)

        blocked, retry_after = await rate_limiter.check(_request_identity(request), time.time())
        if blocked:
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded", "details": {"retry_after_sec": retry_after}},
                headers={"Retry-After": str(retry_after)},
            )
        return await call_next(request)

    @app.on_event("startup")
    async def startup():
        services = app.state.container
        await services.start()
        logger.info("[SYSTEM] CORS allow_origins=%s", allowed_origins)
        logger.info(
            "[SYSTEM] rate_limit enabled=%s window_sec=%s max_requests=%s",
            config.RATE_LIMIT_ENABLED,
            config.RATE_LIMIT_WINDOW_SEC,
            config.RATE_LIMIT_MAX_REQUESTS,
        )

        async def _connection_cleanup_loop():
            while True:
                await asyncio.sleep(config.CONNECTION_CLEANUP_INTERVAL_SEC)
                removed = services.connections.cleanup_inactive(config.CONNECTION_CLEANUP_TTL_SEC)
                if removed > 0:
                    logger.info("[SYSTEM] cleaned inactive connections=%s", removed)

        app.state.background_tasks.append(asyncio.create_task(_connection_cleanup_loop()))
        if config.MISSED_SWEEP_INTERVAL_SEC > 0:
            app.state.background_tasks.append(
                asyncio.create_task(services.sweeper.run_forever(config.MISSED_SWEEP_INTERVAL_SEC))
            )
            logger.info("[SYSTEM] missed session sweep every %ss", config.MISSED_SWEEP_INTERVAL_SEC)

    @app.on_event("shutdown")
    async def shutdown():
        tasks = list(app.state.background_tasks)
        app.state.background_tasks = []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await app.state.container.close()
        logger.info("[SYSTEM] shutdown complete")

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok", "service": "codepair"}

    @app.get("/api/system/metrics")
    async def system_metrics_route(request: Request):
        await get_caller_id(request)
        services = get_container(request)
        set_metric("ws_connections_active", services.connections.active_count())
        return get_metrics_snapshot(extra={
            "instance_id": services.instance_id,
            "store": services.store.__class__.__name__,
        })

    app.include_router(interviews_router)
    app.include_router(questions_router)
    app.include_router(session_ws_router)
    return app


app = create_app()
