#!/usr/bin/env python3
"""Batch catch-up: reindex records selected by criteria."""

import argparse
import asyncio
import sys
import time
from datetime import datetime
from typing import Optional

import structlog

from talent_index.bootstrap import build_services
from talent_index.common.config import ReindexConfig, get_config
from talent_index.common.errors import TalentIndexError
from talent_index.common.logging import configure_logging, log_performance
from talent_index.reindex.orchestrator import BatchReindexReport
from talent_index.store.base import ReindexCriteria

logger = structlog.get_logger("reindex_by_criteria")


async def reindex_entities(
    entity_type: str,
    criteria: ReindexCriteria,
    install_triggers: bool = False,
    config: Optional[ReindexConfig] = None
) -> Optional[BatchReindexReport]:
    """Reindex matching records of one entity type."""
    config = config or ReindexConfig()
    services = build_services(config, "reindex_by_criteria")
    try:
        if install_triggers:
            await services.store.install_change_triggers(config.talent_reindex_entity_types)
        return await services.orchestrator.reindex_by_criteria(entity_type, criteria)
    except TalentIndexError as e:
        logger.error("Batch reindex failed", entity_type=entity_type, error=str(e))
        return None
    finally:
        await services.close()


def main():
    """Main function for CLI."""
    parser = argparse.ArgumentParser(description="Reindex records matching criteria")
    parser.add_argument("--entity", required=True, help="Entity type to reindex")
    parser.add_argument("--missing-embedding", action="store_true", help="Only records without an embedding")
    parser.add_argument("--status", help="Only records with this status")
    parser.add_argument(
        "--updated-after",
        type=datetime.fromisoformat,
        help="Only records updated after this ISO timestamp"
    )
    parser.add_argument("--limit", type=int, help="Maximum number of records")
    parser.add_argument("--install-triggers", action="store_true", help="Install change notification triggers first")

    args = parser.parse_args()

    config = get_config("reindex")
    configure_logging("reindex_by_criteria", config.talent_log_level, config.talent_log_format)

    criteria = ReindexCriteria(
        missing_embedding=args.missing_embedding,
        status=args.status,
        updated_after=args.updated_after,
        limit=args.limit,
    )
    started = time.time()
    report = asyncio.run(reindex_entities(
        entity_type=args.entity,
        criteria=criteria,
        install_triggers=args.install_triggers,
        config=config
    ))

    if report is None:
        print(f"Failed to reindex {args.entity}")
        sys.exit(1)

    log_performance(
        "reindex_by_criteria",
        (time.time() - started) * 1000,
        entity_type=args.entity,
        succeeded=len(report.succeeded),
        failed=len(report.failed)
    )
    print(f"Reindexed {args.entity}: {len(report.succeeded)} succeeded, {len(report.failed)} failed")
    for failure in report.failed:
        print(f"  {failure.record_id}: {failure.error}")
    sys.exit(0 if not report.failed else 2)


if __name__ == "__main__":
    main()
