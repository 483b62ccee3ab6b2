# placement_engine/run_controller.py
"""Run the placement controller and its API."""

import logging
import sys

import uvicorn

from placement_engine.api.main import create_app
from placement_engine.config import settings
from placement_engine.container import build_services
from placement_engine.core.errors import WorkloadConfigError

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    logger.info("Starting Placement Controller")

    try:
        services = build_services(settings)
    except WorkloadConfigError as e:
        logger.error(f"Invalid workload configuration: {e}")
        sys.exit(2)

    app = create_app(services)

    services.controller.start()
    try:
        uvicorn.run(app, host=settings.api_host, port=settings.api_port)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        services.controller.stop()


if __name__ == "__main__":
    main()
