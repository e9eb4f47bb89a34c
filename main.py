"""
feedboard entry point.

Loads the configuration, wires the service manager, cache and widgets,
keeps widgets refreshed in the background and serves the HTTP API.
"""

import asyncio

import uvicorn
from loguru import logger

from feedboard.api import create_app
from feedboard.config import load_config
from feedboard.datasource import RefreshScheduler, default_registry
from feedboard.services import ServiceManager, create_cache
from feedboard.settings import global_settings
from feedboard.utils import setup_logging


async def main() -> None:
    setup_logging(global_settings.log_level)
    logger.info("Starting feedboard...")

    config = load_config(global_settings.config_path)
    cache = create_cache(config.cache)
    manager = ServiceManager(config)
    registry = default_registry()

    widgets = {}
    scheduler = RefreshScheduler(manager, cache)
    for widget_config in config.widgets:
        widget = registry.build(widget_config)
        widgets[widget.name] = widget
        scheduler.add_widget(widget, widget_config.refresh_minutes)

    await cache.start()
    manager.start()

    try:
        logger.info("Performing initial widget refresh...")
        await scheduler.refresh_now()
        scheduler.start()

        app = create_app(manager, cache, widgets, scheduler)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=global_settings.api_host,
                port=global_settings.api_port,
                log_level=global_settings.log_level.lower(),
            )
        )
        logger.info(
            f"feedboard listening on {global_settings.api_host}:{global_settings.api_port}"
        )
        await server.serve()

    finally:
        logger.info("Shutting down...")
        if scheduler.is_running():
            scheduler.stop()
        await manager.aclose()
        await cache.close()
        logger.info("feedboard stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal")
