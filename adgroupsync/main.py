"""Service entry point: load settings and poll the directory forever."""

import asyncio
import signal

from adgroupsync.core.config import Settings
from adgroupsync.core.logging import configure_logging, logger
from adgroupsync.platform.sync.factory import build_coordinator, run_polling_loop

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


async def serve(settings: Settings) -> None:
    """Run the polling loop until SIGINT or SIGTERM, then close every server."""
    coordinator = build_coordinator(settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, stop_event.set)
    logger.info(f"Group sync started for {len(coordinator.servers)} server(s)")
    try:
        await run_polling_loop(coordinator, settings, stop_event)
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)
        coordinator.close()
        logger.info("Group sync stopped")


def main() -> None:
    """Console script entry point."""
    settings = Settings()
    configure_logging(settings.log_level)
    asyncio.run(serve(settings))


if __name__ == "__main__":
    main()
