"""Run the agent with uvicorn on the port named in the configuration file."""

import sys

import structlog
import uvicorn

from fisherman.config import ConfigError, load_config, settings
from fisherman.logging_config import configure_logging


def main() -> None:
    configure_logging(json_logs=not settings.debug, log_level=settings.log_level)
    try:
        config = load_config(settings.config_path)
    except ConfigError as exc:
        structlog.get_logger().error(
            "config_load_failed", path=str(settings.config_path), error=str(exc)
        )
        sys.exit(1)

    uvicorn.run(
        "fisherman.main:app",
        host=settings.host,
        port=config.default.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
