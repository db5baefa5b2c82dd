# Application lifecycle for the trading desk

import asyncio
import signal
import sys
from typing import Optional

from core.logging import configure_logging, get_logger
from app.containers import AppContainer


class ApplicationOrchestrator:
    """Starts the desk's services in dependency order and stops them in reverse."""

    def __init__(self, container: Optional[AppContainer] = None):
        self.container = container or AppContainer()
        self._shutdown_event = asyncio.Event()
        self._started_services = []

        self.settings = self.container.settings()
        configure_logging(self.settings)
        self.logger = get_logger("threshold_desk.main", component="application")

    async def startup(self):
        """Load credentials and state, then bring the feed and schedulers up."""
        self.logger.info("Starting trading desk", app=self.settings.app_name,
                         environment=self.settings.environment.value)

        instruments = self.container.instrument_registry()
        if not len(instruments):
            self.logger.warning("No instruments configured; nothing will trade")

        accounts = self.container.account_registry().init()
        if accounts == 0:
            self.logger.warning("No usable accounts; live orders and market data are unavailable")

        manager = self.container.state_machine_manager()
        manager.init(instruments.all())

        for service in (
            manager,
            self.container.live_trading_service(),
            self.container.market_feed_service(),
            self.container.session_scheduler(),
        ):
            await service.start()
            self._started_services.append(service)
        self.logger.info("All services started", instruments=len(instruments), accounts=accounts)

    async def shutdown(self):
        """Stop services in reverse start order; the manager flushes state last."""
        self.logger.info("Shutting down trading desk")
        for service in reversed(self._started_services):
            try:
                await service.stop()
            except Exception as e:
                self.logger.error("Error stopping service", service=type(service).__name__, error=str(e))
        self._started_services = []
        self.logger.info("Trading desk shutdown complete")

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        try:
            self.logger.info(f"Received shutdown signal: {signal.strsignal(signum)}")
            self._shutdown_event.set()
        except Exception as e:
            print(f"Error in signal handler: {e}", file=sys.stderr)
            self._shutdown_event.set()

    async def run(self):
        """Run without the HTTP surface until a shutdown signal arrives."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

        try:
            await self.startup()
            self.logger.info("Application is now running. Press Ctrl+C to exit.")
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()


async def main():
    """Headless entry point (market feed, live trading, scheduler)"""
    app = ApplicationOrchestrator()
    await app.run()


if __name__ == "__main__":
    asyncio.run(main())
