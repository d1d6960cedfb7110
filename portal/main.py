import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portal.config import Settings, settings
from portal.exception_handlers import register_exception_handlers
from portal.middleware.logging import StructuredLoggingMiddleware, setup_structured_logging
from portal.plugins.loader import LoadOptions
from portal.plugins.runtime import RuntimeManager
from portal.plugins.upgrade import UpgradeService
from portal.routes import plugins

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    upgrades: UpgradeService | None = None,
    **registry_kwargs,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        app_settings:    Settings to use; defaults to the module-level settings.
        transport:       Optional httpx transport for the platform backend client.
        upgrades:        Upgrade service carrying the billing callback.
        registry_kwargs: Passed to every tenant's PluginRegistry (timeout, retry policy).
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        headers = {}
        if app_settings.plugin_backend_token:
            headers["Authorization"] = f"Bearer {app_settings.plugin_backend_token}"
        async with httpx.AsyncClient(
            base_url=app_settings.plugin_backend_url,
            headers=headers,
            timeout=app_settings.registry_timeout_seconds,
            transport=transport,
        ) as http:
            app.state.runtimes = RuntimeManager(
                http,
                options=LoadOptions(source=app_settings.plugin_source, lazy_load=app_settings.plugin_lazy_load),
                upgrades=upgrades,
                **registry_kwargs,
            )
            logger.info("Starting %s (%s)", app_settings.app_name, app_settings.environment)
            yield
        logger.info("Shutting down %s", app_settings.app_name)

    app = FastAPI(
        title=app_settings.app_name,
        description="Tenant portal plugin lifecycle and entitlement API",
        debug=app_settings.debug,
        version=app_settings.app_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(StructuredLoggingMiddleware)

    register_exception_handlers(app)

    app.include_router(plugins.router, prefix="/api/v1")

    @app.get("/health", tags=["Health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": app_settings.app_version}

    return app


def configure_logging(app_settings: Settings | None = None) -> None:
    app_settings = app_settings or settings
    setup_structured_logging(log_level=app_settings.log_level, json_format=app_settings.log_json)
