"""Run the order event listener in the foreground: ``python -m app.worker``."""

import signal

from app.core_settings import get_settings
from app.infrastructure.db import init_models
from app.main import build_listener
from app.infrastructure.publisher import get_publisher
from shared.core import get_logger, setup_logging

def main() -> None:
    settings = get_settings()
    setup_logging(service_name="inventory-listener", level=settings.LOG_LEVEL)
    logger = get_logger(__name__)

    init_models()
    listener = build_listener()

    def _shutdown(signum, _frame):
        logger.info("Shutdown requested", extra={'extra_fields': {'signal': signum}})
        listener.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    try:
        listener.run()
    finally:
        get_publisher().close()

if __name__ == "__main__":
    main()
