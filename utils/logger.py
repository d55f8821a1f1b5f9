"""Universal logfire setup for the application."""

import logfire


def configure_logging(write_token: str | None = None, instrument_mongo: bool = False):
    """Configure logfire once per process.

    Spans are only exported when a write token is present.
    """
    logfire.configure(
        token=write_token,
        service_name="token-gate",
        send_to_logfire="if-token-present",
    )

    if instrument_mongo:
        logfire.instrument_pymongo()
