"""wificomp application entrypoint."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from wificomp import database
from wificomp.compare.engine import ComparisonEngine
from wificomp.config import Settings, settings
from wificomp.exclusions.registry import ExclusionRegistry
from wificomp.live.controller import LiveScanController
from wificomp.scanner.base import ScanSource

logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)


def _create_scan_source(cfg: Settings) -> ScanSource:
    """Factory: instantiate the configured scan source."""
    if cfg.scan_source == "mock":
        from wificomp.scanner.mock import MockScanSource

        return MockScanSource()
    if cfg.scan_source != "iw":
        logger.warning("Unknown scan source '%s', using iw", cfg.scan_source)
    from wificomp.scanner.iw import IwScanSource

    return IwScanSource(use_sudo=cfg.use_sudo, timeout=cfg.scan_timeout)


async def _tick_loop(controller: LiveScanController, interval: float) -> None:
    """The single main loop: applies scan results and drives the auto-scan timer."""
    while True:
        try:
            controller.tick()
        except Exception:
            logger.exception("Error in live scan tick")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup/shutdown lifecycle."""
    database.init_db()
    logger.info("Database initialized")

    registry = ExclusionRegistry(database.engine)
    registry.load()

    controller = LiveScanController(
        _create_scan_source(settings),
        registry,
        auto_scan_interval=settings.auto_scan_interval,
    )
    app.state.registry = registry
    app.state.controller = controller
    app.state.compare = ComparisonEngine(
        registry,
        match_mode=settings.compare_match_by,
        metric=settings.compare_metric,
    )

    if settings.interface:
        adapter = await controller.source.describe(settings.interface)
        controller.bind_adapter(adapter, duration_target_secs=settings.duration_target_secs())
        logger.info("Bound %s (%s)", adapter.interface, adapter.display_name)

    tick_task = asyncio.create_task(_tick_loop(controller, settings.tick_interval))

    yield

    tick_task.cancel()
    try:
        await tick_task
    except asyncio.CancelledError:
        pass
    await controller.close()

    # A bound session is unsaved; keep its data on quit
    session = controller.session
    if session is not None and session.scans:
        path = controller.save(settings.sessions_dir)
        logger.info("Saved active session to %s on shutdown", path)
    controller.end_session()


app = FastAPI(
    title="wificomp",
    description="WiFi adapter signal recording and comparison",
    version="0.1.0",
    lifespan=lifespan,
)

# Register routers
from wificomp.api.routes import router as api_router  # noqa: E402

app.include_router(api_router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


def main() -> None:
    import uvicorn

    logger.info("Starting wificomp on %s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
