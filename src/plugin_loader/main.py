"""Serve a plugin loader runtime over HTTP.

`PluginLoaderApplication` owns one `LoaderRuntime` for the lifetime of the
FastAPI app: the runtime is wired and subscribed to the ready topic when the
app starts, and torn down (alarms, tags, downloads) when it stops. The
``/api/v1`` routes live in `api.routes`.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api.routes import initialize_api, router
from .config.settings import Settings
from .core.runtime import LoaderRuntime

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class PluginLoaderApplication:
    """Plugin loader service.

    Args:
        settings: Application settings; read from the environment if omitted.
        runtime: Pre-built runtime (custom dimensions, executor or consent);
            when omitted one is built from the definition files in
            ``settings`` at start-up.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        runtime: Optional[LoaderRuntime] = None,
    ):
        self.settings = settings or Settings()
        self.runtime = runtime
        self.app: FastAPI | None = None
        logging.basicConfig(
            level=logging.DEBUG if self.settings.debug else logging.INFO,
            format=LOG_FORMAT,
        )
        self.logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def _runtime_session(self, app: FastAPI):
        self.runtime = initialize_api(self.settings, self.runtime)
        self.logger.info(
            f"Serving {self.runtime.page.url} with "
            f"{len(self.runtime.plugin_configs)} plugins, "
            f"testgroup {self.runtime.experiments.testgroup}"
        )
        try:
            yield
        finally:
            self.logger.info("Closing loader runtime")
            await self.runtime.aclose()

    def _service_info(self) -> Dict[str, Any]:
        runtime = self.runtime
        return {
            "message": self.settings.app_name,
            "version": __version__,
            "status": "running",
            "started": bool(runtime and runtime.started),
            "plugins": len(runtime.plugin_configs) if runtime else 0,
        }

    def create_app(self) -> FastAPI:
        """Build the FastAPI app: runtime lifespan, CORS, API router and ``/``."""
        app = FastAPI(
            title=self.settings.app_name,
            description="Conditional third-party script loading with targeting, consent and experiments",
            version=__version__,
            lifespan=self._runtime_session,
        )
        app.add_middleware(
            CORSMiddleware,
            allow_origins=self.settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        app.include_router(router)
        app.add_api_route("/", self._service_info, methods=["GET"])

        self.app = app
        return app

    def run(self) -> None:
        """Serve on ``api_host:api_port`` with uvicorn."""
        app = self.app or self.create_app()
        uvicorn.run(
            app,
            host=self.settings.api_host,
            port=self.settings.api_port,
            log_level="debug" if self.settings.debug else "info",
        )


# Servable with `uvicorn plugin_loader.main:app`
loader_app = PluginLoaderApplication()
app = loader_app.create_app()


def main() -> None:
    loader_app.run()


if __name__ == "__main__":
    main()
