"""
FastAPI app wiring for MemoryRouter.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

import core.config as config
from core.runtime import Runtime, build_runtime
from core.services import retention_service
from app.middleware import configure_middleware
from app.routes.chat import router as chat_router
from app.routes.health import router as health_router
from app.routes.memory import router as memory_router
from app.routes.providers import router as providers_router
from app.routes.root import router as root_router


async def _sweep_loop(runtime: Runtime) -> None:
    interval = runtime.retention_config.sweep_interval_seconds
    if interval <= 0:
        return
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(
                retention_service.run_memory_sweep,
                runtime.store,
                runtime.retention_config,
            )
        except Exception as exc:
            config.logger.warning(f"Memory sweep error: {exc}")


def _default_runtime_factory() -> Runtime:
    config.validate_and_prepare_config()
    return build_runtime()


def create_app(runtime_factory: Optional[Callable[[], Runtime]] = None) -> FastAPI:
    factory = runtime_factory or _default_runtime_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the runtime on startup, tear it down on shutdown."""
        runtime = factory()
        app.state.runtime = runtime
        await runtime.start()
        sweep_task = None
        if runtime.retention_config.sweep_interval_seconds > 0:
            sweep_task = asyncio.create_task(_sweep_loop(runtime))
        try:
            yield
        finally:
            if sweep_task:
                sweep_task.cancel()
                try:
                    await sweep_task
                except asyncio.CancelledError:
                    pass
            await runtime.close()
            app.state.runtime = None

    app = FastAPI(title="MemoryRouter", redirect_slashes=False, lifespan=lifespan)
    configure_middleware(app)

    app.include_router(chat_router)
    app.include_router(memory_router)
    app.include_router(providers_router)
    app.include_router(health_router)
    app.include_router(root_router)
    return app


# =============================================================================
# ASGI Application (module-level for production deployment)
# =============================================================================

app = create_app()
