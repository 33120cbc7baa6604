"""
Health check endpoint for the matchmaking maintenance service.
"""

from aiohttp import web
from loguru import logger

from randomcall.core.diagnostics import get_metrics
from randomcall.matchmaking.store import SessionStore
from randomcall.matchmaking.sweeper import Sweeper

STORE_KEY = web.AppKey("store", SessionStore)
SWEEPER_KEY = web.AppKey("sweeper", Sweeper)


async def health_handler(request: web.Request) -> web.Response:
    """Report database reachability, sweeper status and store metrics."""
    store = request.app[STORE_KEY]
    sweeper = request.app[SWEEPER_KEY]

    database_ok = await store.ping()
    sweeper_status = sweeper.status()
    healthy = database_ok and sweeper_status["running"]

    if not healthy:
        logger.warning(f"Health check unhealthy: database={database_ok} sweeper={sweeper_status['running']}")

    return web.json_response(
        {
            "status": "ok" if healthy else "unhealthy",
            "service": "randomcall",
            "details": {
                "database": database_ok,
                "sweeper": sweeper_status,
                "metrics": get_metrics(),
            },
        },
        status=200 if healthy else 503,
    )


def create_health_app(store: SessionStore, sweeper: Sweeper) -> web.Application:
    app = web.Application()
    app[STORE_KEY] = store
    app[SWEEPER_KEY] = sweeper
    app.router.add_get("/health", health_handler)
    app.router.add_get("/", health_handler)
    return app


async def start_health_server(app: web.Application, port: int) -> web.AppRunner:
    """Serve app on 0.0.0.0:port. Call runner.cleanup() to stop."""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info(f"Health check server running on port {port}")
    return runner
