"""Main application - runs the bridge and serves its HTTP API."""
import signal
import sys

import uvicorn

from wa_bridge.api import create_app
from wa_bridge.bootstrap import build_bridge
from wa_bridge.logging_conf import logger, setup_logging
from wa_bridge.settings import Settings


class Application:
    """Owns the bridge and the HTTP server for the lifetime of the process."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.bridge = build_bridge(settings)
        self.server = uvicorn.Server(uvicorn.Config(
            create_app(self.bridge, settings),
            host=settings.host,
            port=settings.port,
            log_config=None,
        ))

    def start(self):
        """Start the bridge."""
        logger.info("=" * 50)
        logger.info("wa-bridge")
        logger.info("=" * 50)
        logger.info(f"CRM: {self.settings.crm_url}")
        logger.info(f"Session backend: {self.settings.session_backend}")
        logger.info(f"Listening on {self.settings.host}:{self.settings.port}")
        logger.info("=" * 50)
        self.bridge.start()

    def stop(self):
        """Stop the server and the bridge."""
        self.server.should_exit = True
        self.bridge.stop()
        logger.info("Stopped")

    def run(self):
        """Main loop."""
        self.start()
        try:
            self.server.run()
        finally:
            self.stop()


def main():
    """Entry point."""
    settings = Settings.from_env()
    setup_logging(settings)

    try:
        settings.validate()
        app = Application(settings)
    except (ValueError, ImportError, AttributeError, TypeError) as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}, shutting down gracefully")
        app.server.should_exit = True

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    app.run()


if __name__ == "__main__":
    main()
