"""
Script to run one aircraft sync from the command line

Usage:
    python scripts/run_sync.py --type comprehensive
    python scripts/run_sync.py --type bulk --max-pages 5 --deadline 600
    python scripts/run_sync.py --type enrichment --aircraft-id 1001 --aircraft-id 1002
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

import httpx
from core.config import settings
from core.database import async_session_maker, engine
from core.exceptions import SyncAlreadyRunningError, SyncException
from core.logging import setup_logging
from ingestion.auth_manager import AuthManager, ProviderCredentials
from ingestion.client import ProviderClient
from ingestion.runner import SyncOptions, SyncRunner
from models.base import SyncType

setup_logging()
logger = logging.getLogger(__name__)


async def run_sync(options: SyncOptions) -> int:
    """Run one sync; returns the process exit code"""
    try:
        credentials = ProviderCredentials.from_settings()
    except SyncException as e:
        logger.error(str(e))
        return 2

    async with httpx.AsyncClient(timeout=settings.PROVIDER_TIMEOUT_SECONDS) as http_client:
        auth_manager = AuthManager(http_client, credentials)
        client = ProviderClient.from_settings(http_client, auth_manager)

        try:
            async with async_session_maker() as session:
                runner = SyncRunner(session, client)
                result = await runner.run(options)
        except SyncAlreadyRunningError as e:
            logger.warning(str(e))
            return 3
        except SyncException as e:
            logger.error(f"Sync failed: {e}")
            return 1
        finally:
            await engine.dispose()

    logger.info(
        f"Sync {result['run_id']} {result['status']}: "
        f"Fetched={result['records_fetched']}, "
        f"Created={result['records_created']}, "
        f"Updated={result['records_updated']}, "
        f"Unchanged={result['records_unchanged']}, "
        f"Failed={result['records_failed']}"
    )
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Sync aircraft listings from the provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--type",
        choices=[t.value.lower() for t in SyncType],
        default=SyncType.COMPREHENSIVE.value.lower(),
        help="Sync type (default: comprehensive)",
    )
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        help="Rewrite every record even when its content is unchanged",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help=f"Bulk export page ceiling (default: {settings.BULK_MAX_PAGES})",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        help="Abort the run after this many seconds",
    )
    parser.add_argument(
        "--aircraft-id",
        type=int,
        action="append",
        default=[],
        help="Provider aircraft id to re-enrich (enrichment only, repeatable)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum stale aircraft to re-enrich (enrichment only)",
    )
    args = parser.parse_args()

    options = SyncOptions(
        sync_type=SyncType(args.type.upper()),
        force_refresh=args.force_refresh,
        max_pages=args.max_pages,
        deadline_seconds=args.deadline,
        aircraft_ids=args.aircraft_id,
        limit=args.limit,
        triggered_by="cli",
    )
    return asyncio.run(run_sync(options))


if __name__ == "__main__":
    sys.exit(main())
