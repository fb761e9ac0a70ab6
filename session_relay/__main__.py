"""Command-line entry point: ``session-relay`` / ``python -m session_relay``."""

import argparse
import sys

import uvicorn

from session_relay.core.config import get_settings
from session_relay.core.exceptions import ConfigurationError
from session_relay.core.logging import configure_logging, get_logger
from session_relay.main import create_app

logger = get_logger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Relay Redis session topics to WebSocket clients"
    )
    parser.add_argument("--listenaddr", help="listen address eg :8081")
    parser.add_argument("--redisaddr", help="redis address eg 127.0.0.1:6379")
    parser.add_argument("--debug", action="store_true", help="Pretty console logs and debug level")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Run the relay until it is stopped.

    Returns:
        Process exit status: 0 on a normal shutdown, 1 if startup failed or
        the router lost its subscription for good.
    """
    args = parse_args(argv)

    overrides = {}
    if args.listenaddr:
        overrides["listen_addr"] = args.listenaddr
    if args.redisaddr:
        overrides["redis_addr"] = args.redisaddr
    if args.debug:
        overrides["debug"] = True
    settings = get_settings().model_copy(update=overrides)

    configure_logging(settings)

    try:
        host, port = settings.listen_host, settings.listen_port
        redis_url = settings.redis_url
    except ConfigurationError as e:
        logger.critical("invalid_configuration", error=e.message)
        return 1

    fatal_errors: list[BaseException] = []
    server: uvicorn.Server | None = None

    def on_fatal(error: BaseException) -> None:
        fatal_errors.append(error)
        if server is not None:
            server.should_exit = True

    app = create_app(settings, on_fatal=on_fatal)
    server = uvicorn.Server(
        uvicorn.Config(app, host=host, port=port, lifespan="on", log_config=None)
    )

    logger.info("starting_http_server", listen_addr=settings.listen_addr, redis_url=redis_url)
    server.run()

    if not server.started or fatal_errors:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
