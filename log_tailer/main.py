#!/usr/bin/env python3
"""Log Tailer: Entry Point."""

import asyncio
import logging
import signal
import sys

from log_tailer.config import Config, load_config
from log_tailer.credentials import Credentials, resolve_credentials, resolve_foreign_key
from log_tailer.errors import ConfigurationError, CredentialError, DeliveryExhaustedError, SourceAccessError
from log_tailer.models import RecordTemplate
from log_tailer.pipeline import TailPipeline
from log_tailer.sink import PostgrestSink

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [TAILER] %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def build_template(config: Config, credentials: Credentials) -> RecordTemplate:
    return RecordTemplate(
        identity=credentials.identity,
        fk_value=resolve_foreign_key(credentials, config.fk_claim, config.fk_value),
        user_field=config.user_field,
        fk_field=config.fk_field,
        content_field=config.content_field,
        source_field=config.source_field,
    )


async def run(config: Config, template: RecordTemplate) -> int:
    """Run the pipeline until SIGINT/SIGTERM. Returns the process exit status."""
    shutdown = asyncio.Event()
    failed = False

    def on_exhausted(exc: DeliveryExhaustedError):
        nonlocal failed
        if config.exit_on_delivery_failure:
            logger.error("Stopping: delivery retries exhausted")
            failed = True
            shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    sink = PostgrestSink(config.sink_url, config.sink_key, config.token, timeout=config.http_timeout)
    pipeline = TailPipeline(config, template, sink, on_exhausted=on_exhausted)
    try:
        await pipeline.start()
        logger.info("Log Tailer running. Press Ctrl+C to stop.")
        await shutdown.wait()
        logger.info("Shutting down...")
    finally:
        await pipeline.stop()
        await sink.aclose()
        logger.info("Stats: %s", pipeline.metrics.snapshot())

    return 1 if failed else 0


def main(argv: list[str] | None = None) -> int:
    try:
        config = load_config(argv)
        logging.getLogger().setLevel(config.log_level.upper())
        credentials = resolve_credentials(config.token)
        template = build_template(config, credentials)
    except (ConfigurationError, CredentialError) as e:
        logger.error("Error: %s", e)
        return 1

    logger.info("Config: table=%s, %d source(s), backoff=%dms, max_retries=%d",
                config.table, len(config.sources), config.backoff_ms, config.max_retries)
    try:
        return asyncio.run(run(config, template))
    except SourceAccessError as e:
        logger.error("Error: %s", e)
        return 1
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
