"""
Paginated bulk aircraft export from the provider.

This module provides the bulk retrieval phase with:
- Fixed-size page requests fetched strictly in order
- A hard page-count ceiling against a provider that never signals completion
- Pacing between pages on top of the shared rate limiter
- Cooperative cancellation between pages
- All-or-nothing failure policy: any failed page aborts the fetch
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from core.config import settings
from core.exceptions import SyncException, TransportError, ValidationError
from ingestion.cancellation import CancellationToken
from ingestion.client import ProviderClient

logger = logging.getLogger(__name__)

BULK_EXPORT_PATH = "/api/Aircraft/getBulkAircraftExport/{security_token}"

# Export request defaults: every aircraft including inactive ones, with change history
DEFAULT_EXPORT_FILTERS: Dict[str, Any] = {
    "forsale": "",
    "aircraftchanges": "true",
    "showHistoricalAcRefs": True,
    "exactMatchReg": False,
    "exactMatchSer": False,
    "exactMatchMake": False,
    "exactMatchModel": False,
    "caseSensitive": False,
    "includeInactive": True,
    "includeDeleted": False,
}

# Keys that may wrap the record array in an object-shaped page
RECORD_KEYS = ("aircraft", "data", "results")


class BulkFetcher:
    """
    Fetch the full aircraft export page by page.

    A page with exactly `page_size` records means more data may exist; a
    shorter page ends pagination. Reaching `max_pages` stops pagination with
    a warning instead of failing the run.

    Attributes:
        pages_fetched: Pages retrieved by the last fetch_all call
        hit_page_ceiling: Whether the last fetch stopped at max_pages
    """

    def __init__(
        self,
        client: ProviderClient,
        page_size: Optional[int] = None,
        max_pages: Optional[int] = None,
        page_delay: Optional[float] = None,
    ):
        self.client = client
        self.page_size = page_size or settings.BULK_PAGE_SIZE
        self.max_pages = max_pages or settings.BULK_MAX_PAGES
        self.page_delay = settings.PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self.pages_fetched = 0
        self.hit_page_ceiling = False

    def build_request(self, page: int, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        body = dict(DEFAULT_EXPORT_FILTERS)
        if filters:
            body.update(filters)
        body["page"] = page
        body["pageSize"] = self.page_size
        return body

    @staticmethod
    def extract_records(payload: Any, page: int) -> List[Dict[str, Any]]:
        """
        Pull the record array out of a page response.

        Tolerates a bare array or an object wrapping it; a provider error
        status or any other shape is a failed page.
        """
        if payload is None:
            return []
        if isinstance(payload, list):
            return payload
        if isinstance(payload, dict):
            status = str(payload.get("responsestatus", ""))
            if "ERROR" in status.upper():
                raise TransportError(
                    "Provider reported an error for export page",
                    context={"page": page, "responsestatus": status[:200]}
                )
            for key in RECORD_KEYS:
                records = payload.get(key)
                if isinstance(records, list):
                    return records
                if records is None and key in payload:
                    return []
        raise TransportError(
            "Unexpected export page shape",
            context={"page": page, "payload_type": type(payload).__name__}
        )

    async def fetch_all(
        self,
        filters: Optional[Dict[str, Any]] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch every export page.

        Returns:
            All raw aircraft records, in page order

        Raises:
            AuthError: Session could not be obtained
            TransportError: Any page failed; earlier pages are discarded
            SyncCancelledError: Cancelled or past deadline between pages
        """
        all_records: List[Dict[str, Any]] = []
        self.pages_fetched = 0
        self.hit_page_ceiling = False
        page = 1

        while True:
            if cancellation is not None:
                cancellation.check(stage=f"bulk_fetch_page_{page}")

            logger.info(f"Fetching export page {page} (page size {self.page_size})")

            try:
                payload = await self.client.request_json(
                    "POST",
                    BULK_EXPORT_PATH,
                    json=self.build_request(page, filters),
                )
            except ValidationError as e:
                raise TransportError(
                    "Malformed export page",
                    context={"page": page, "records_discarded": len(all_records)},
                    original_exception=e
                )
            except SyncException as e:
                e.context.setdefault("page", page)
                e.context.setdefault("records_discarded", len(all_records))
                raise

            records = self.extract_records(payload, page)
            all_records.extend(records)
            self.pages_fetched = page
            logger.debug(f"Fetched {len(records)} records from page {page}")

            if len(records) < self.page_size:
                break

            if page >= self.max_pages:
                self.hit_page_ceiling = True
                logger.warning(
                    f"Export page ceiling of {self.max_pages} reached with full pages; "
                    f"stopping at {len(all_records)} records"
                )
                break

            page += 1
            if self.page_delay:
                await asyncio.sleep(self.page_delay)

        logger.info(
            f"Successfully fetched {len(all_records)} aircraft records "
            f"({self.pages_fetched} pages)"
        )
        return all_records
