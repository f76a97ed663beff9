"""
Worker process runner

Runs the publishers, consumers and lease sweeper without the HTTP API, e.g. in
a separate container per service.

Usage:
    SERVICES=inventory python -m app.worker

SIGTERM or SIGINT stops the consumers, drains the outboxes and exits; a second
signal forces the exit.
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

from app.core.config import SERVICES
from app.core.db import close_db, init_db
from app.core.logging import configure_logging
from app.runtime import ServiceRuntime

log = logging.getLogger(__name__)


class WorkerRunner:
    def __init__(self):
        self.runtime: Optional[ServiceRuntime] = None
        self._shutdown_event = asyncio.Event()
        self._shutdown_requested = False

    def _setup_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_shutdown_signal, sig)

    def _handle_shutdown_signal(self, sig: signal.Signals):
        if self._shutdown_requested:
            log.warning(f"Received {sig.name} again, forcing exit")
            sys.exit(1)
        log.info(f"Received {sig.name}, initiating graceful shutdown")
        self._shutdown_requested = True
        self._shutdown_event.set()

    async def run(self):
        self._setup_signal_handlers()
        await init_db()
        self.runtime = ServiceRuntime(SERVICES)
        try:
            await self.runtime.start()
            log.info("Worker is running")
            await self._shutdown_event.wait()
        except Exception as e:
            log.error(f"Worker error: {e}", exc_info=True)
            raise
        finally:
            await self.runtime.stop()
            await close_db()
            log.info("Worker stopped")


async def main():
    configure_logging()
    await WorkerRunner().run()


if __name__ == "__main__":
    asyncio.run(main())
