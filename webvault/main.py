import asyncio
import signal

from aiohttp import web
from loguru import logger

# -------------------------------
# INTERNAL IMPORTS
# -------------------------------
from webvault.api.server import create_app
from webvault.jobs.aggregator import JobAggregator
from webvault.storage.tenant_store import TenantStoreRegistry
from webvault.utils.config_loader import load_config
from webvault.utils.env_loader import load_environment
from webvault.utils.logger import setup_logger
from webvault.worker import FetchPool


# -------------------------------
# MAIN APPLICATION
# -------------------------------
async def main() -> None:
    env_file = load_environment()
    config = load_config()
    setup_logger(config.log_level, config.log_path)
    if env_file is not None:
        logger.info(f"Loaded environment from {env_file}")

    logger.info("Starting content store service...")

    registry = TenantStoreRegistry(config.data_dir)
    pool = FetchPool.from_config(config)
    aggregator = JobAggregator.from_config(config)
    logger.info(
        f"Fetch pool: {pool.concurrency} workers, max {pool.max_urls} URLs per batch; "
        f"job sources: {', '.join(source.name for source in aggregator.sources)}"
    )

    app = create_app(registry, pool, aggregator)
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, config.api_host, config.api_port)
    await site.start()

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    logger.info(f"API server running on http://{config.api_host}:{config.api_port}")

    try:
        await shutdown_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Shutting down...")
        # cleanup closes every cached tenant store
        await runner.cleanup()


# -------------------------------
# ENTRYPOINT
# -------------------------------
def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
