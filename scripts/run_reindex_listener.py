#!/usr/bin/env python3
"""Run the change listener and reindex orchestrator."""

import argparse
import asyncio
import signal

import structlog

from talent_index.bootstrap import build_services
from talent_index.common.config import ReindexConfig, get_config
from talent_index.common.logging import configure_logging
from talent_index.reindex.listener import ChangeListener
from talent_index.store.base import ReindexCriteria

logger = structlog.get_logger("run_reindex_listener")


async def run(config: ReindexConfig, catch_up: bool, install_triggers: bool) -> None:
    services = build_services(config, "reindex-listener")
    entity_types = config.talent_reindex_entity_types
    listener = ChangeListener(
        services.store,
        services.orchestrator,
        entity_types,
        queue_size=config.talent_reindex_queue_size,
        metrics=services.metrics,
    )

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        if install_triggers:
            await services.store.install_change_triggers(entity_types)

        listener_task = asyncio.create_task(listener.run())

        if catch_up:
            for entity_type in entity_types:
                report = await services.orchestrator.reindex_by_criteria(
                    entity_type,
                    ReindexCriteria(missing_embedding=True)
                )
                logger.info(
                    "Startup catch-up finished",
                    entity_type=entity_type,
                    succeeded=len(report.succeeded),
                    failed=len(report.failed)
                )

        stop_task = asyncio.create_task(stop.wait())
        done, _ = await asyncio.wait({listener_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        stop_task.cancel()
        if listener_task not in done:
            listener_task.cancel()
        try:
            await listener_task
        except asyncio.CancelledError:
            pass
    finally:
        await services.close()
        logger.info("Reindex listener stopped")


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Listen for record changes and keep the search index fresh")
    parser.add_argument("--catch-up", action="store_true", help="Reindex records without embeddings on startup")
    parser.add_argument("--install-triggers", action="store_true", help="Install change notification triggers first")
    args = parser.parse_args()

    config = get_config("reindex")
    configure_logging("reindex-listener", config.talent_log_level, config.talent_log_format)
    asyncio.run(run(config, args.catch_up, args.install_triggers))


if __name__ == "__main__":
    main()
