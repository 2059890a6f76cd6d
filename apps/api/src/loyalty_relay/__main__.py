"""Serve the relay API: ``python -m loyalty_relay`` or the ``loyalty-relay`` script."""

import uvicorn

from loyalty_relay.core.settings import settings


def main() -> None:
    uvicorn.run(
        "loyalty_relay.app:create_app",
        factory=True,
        host=settings.http_host,
        port=settings.http_port,
        # Logging is owned by configure_logging; uvicorn records flow through its InterceptHandler.
        log_config=None,
    )


if __name__ == "__main__":
    main()
