"""
Main entry point for the workflow service.

Loads config, builds the service, starts the HTTP server and signal handlers.
"""

import asyncio
import json
import os
import signal
import sys
from typing import Optional

import structlog
from aiohttp import web

from core.config import ConfigLoader, FrameworkConfig
from core.errors import ConfigError
from service.service import WorkflowService, create_service


# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if os.getenv("LOG_FORMAT") == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


def build_app(service: WorkflowService) -> web.Application:
    """aiohttp application exposing the message API."""

    async def messages_handler(request: web.Request) -> web.Response:
        try:
            message = await request.json()
        except json.JSONDecodeError:
            return web.json_response(
                {"success": False, "data": None, "error": "Body must be JSON"},
                status=400,
            )
        if not isinstance(message, dict):
            return web.json_response(
                {"success": False, "data": None, "error": "Body must be a JSON object"},
                status=400,
            )

        response = await service.handle(message)
        return web.json_response(response, dumps=lambda obj: json.dumps(obj, default=str))

    async def health_handler(request: web.Request) -> web.Response:
        """Basic health check - is the process alive."""
        return web.json_response({"status": "healthy"})

    async def stats_handler(request: web.Request) -> web.Response:
        response = await service.handle({"type": "GET_STATS"})
        return web.json_response(response["data"], dumps=lambda obj: json.dumps(obj, default=str))

    app = web.Application()
    app.router.add_post("/messages", messages_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_get("/stats", stats_handler)
    return app


class Application:
    """Main application container."""

    def __init__(self):
        self.config: Optional[FrameworkConfig] = None
        self.service: Optional[WorkflowService] = None
        self._runner: Optional[web.AppRunner] = None
        self._shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start all components."""
        logger.info("application_starting")

        config_path = os.getenv("CONFIG_PATH", "./config/framework.yaml")
        if os.path.exists(config_path):
            self.config = ConfigLoader().load_framework_config(config_path)
        else:
            logger.info("config_defaults_used", path=config_path)
            self.config = FrameworkConfig()

        if os.getenv("STORAGE_PATH"):
            self.config.service.storage_path = os.getenv("STORAGE_PATH")
        if os.getenv("PORT"):
            self.config.service.port = int(os.getenv("PORT"))

        self.service = await create_service(self.config)

        self._runner = web.AppRunner(build_app(self.service))
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.config.service.host, self.config.service.port)
        await site.start()

        logger.info(
            "application_started",
            host=self.config.service.host,
            port=self.config.service.port,
        )

    async def stop(self) -> None:
        """Stop all components."""
        logger.info("application_stopping")

        if self._runner:
            await self._runner.cleanup()

        if self.service:
            await self.service.close()

        logger.info("application_stopped")

    async def run(self) -> None:
        """Run until shutdown signal."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


async def main() -> None:
    """Main entry point."""
    app = Application()

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("shutdown_signal_received")
        app.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
        await app.run()
    except ConfigError as e:
        logger.error("config_invalid", error=e.message, path=e.context.get("config_path"))
        sys.exit(1)
    except Exception:
        logger.exception("application_error")
        sys.exit(1)
    finally:
        await app.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
