"""
Unit tests for the paginated bulk export fetcher
"""

import pytest

from core.exceptions import AuthError, SyncCancelledError, TransportError
from ingestion.cancellation import CancellationToken
from ingestion.extractors.bulk_fetcher import BulkFetcher, DEFAULT_EXPORT_FILTERS


def rows(count, start=0):
    return [{"aircraftid": start + i} for i in range(count)]


class TestExtractRecords:

    def test_bare_array(self):
        assert BulkFetcher.extract_records([{"id": 1}], page=1) == [{"id": 1}]

    @pytest.mark.parametrize("key", ["aircraft", "data", "results"])
    def test_wrapped_array(self, key):
        payload = {"responseid": "abc", "responsestatus": "SUCCESS", key: [{"id": 1}]}
        assert BulkFetcher.extract_records(payload, page=1) == [{"id": 1}]

    def test_wrapped_null_is_empty(self):
        assert BulkFetcher.extract_records({"aircraft": None}, page=3) == []

    def test_empty_body_is_empty_page(self):
        assert BulkFetcher.extract_records(None, page=1) == []

    def test_provider_error_status(self):
        with pytest.raises(TransportError) as exc:
            BulkFetcher.extract_records({"responsestatus": "ERROR: INVALID SECURITY TOKEN"}, page=2)
        assert exc.value.context["page"] == 2

    @pytest.mark.parametrize("payload", [{"unexpected": []}, "text", 42])
    def test_unknown_shape(self, payload):
        with pytest.raises(TransportError):
            BulkFetcher.extract_records(payload, page=1)


class TestBuildRequest:

    def test_defaults_and_paging(self, provider_client):
        fetcher = BulkFetcher(provider_client, page_size=100)

        body = fetcher.build_request(3, {"forsale": "Y"})

        assert body["page"] == 3
        assert body["pageSize"] == 100
        assert body["forsale"] == "Y"
        assert body["includeInactive"] is True
        assert DEFAULT_EXPORT_FILTERS["forsale"] == ""


class TestFetchAll:

    @pytest.mark.asyncio
    async def test_full_page_then_short_page(self, bulk_fetcher, fake_provider):
        """A full page of 2000 followed by 450 rows yields 2450 rows"""
        fake_provider.pages = [rows(2000), rows(450, start=2000)]

        records = await bulk_fetcher.fetch_all()

        assert len(records) == 2450
        assert records[0]["aircraftid"] == 0
        assert records[-1]["aircraftid"] == 2449
        assert bulk_fetcher.pages_fetched == 2
        assert [r["page"] for r in fake_provider.export_requests] == [1, 2]
        assert all(r["pageSize"] == 2000 for r in fake_provider.export_requests)

    @pytest.mark.asyncio
    async def test_exact_multiple_needs_empty_page(self, provider_client, fake_provider):
        fetcher = BulkFetcher(provider_client, page_size=10, page_delay=0)
        fake_provider.pages = [rows(10), rows(10, start=10)]

        records = await fetcher.fetch_all()

        assert len(records) == 20
        assert fetcher.pages_fetched == 3

    @pytest.mark.asyncio
    async def test_page_ceiling(self, provider_client, fake_provider, caplog):
        """A provider returning full pages forever is cut at the ceiling"""
        fetcher = BulkFetcher(provider_client, page_size=5, max_pages=4, page_delay=0)
        fake_provider.pages = [rows(5, start=5 * i) for i in range(10)]

        records = await fetcher.fetch_all()

        assert len(records) == 20
        assert fetcher.pages_fetched == 4
        assert fetcher.hit_page_ceiling is True
        assert len(fake_provider.export_requests) == 4
        assert "ceiling" in caplog.text

    @pytest.mark.asyncio
    async def test_wrapped_pages(self, provider_client, fake_provider):
        fetcher = BulkFetcher(provider_client, page_size=2, page_delay=0)
        fake_provider.pages = [
            {"responsestatus": "SUCCESS", "aircraft": rows(2)},
            {"responsestatus": "SUCCESS", "aircraft": rows(1, start=2)},
        ]

        records = await fetcher.fetch_all()

        assert len(records) == 3
        assert fetcher.hit_page_ceiling is False

    @pytest.mark.asyncio
    async def test_failed_page_is_fatal(self, provider_client, fake_provider):
        fetcher = BulkFetcher(provider_client, page_size=2, page_delay=0)
        fake_provider.pages = [rows(2), rows(2, start=2), rows(1, start=4)]
        fake_provider.failing_pages = {2}

        with pytest.raises(TransportError) as exc:
            await fetcher.fetch_all()

        assert exc.value.context["page"] == 2
        assert exc.value.context["records_discarded"] == 2

    @pytest.mark.asyncio
    async def test_malformed_page_is_fatal(self, provider_client, fake_provider):
        fetcher = BulkFetcher(provider_client, page_size=2, page_delay=0)
        fake_provider.pages = [{"something": "else"}]

        with pytest.raises(TransportError):
            await fetcher.fetch_all()

    @pytest.mark.asyncio
    async def test_auth_failure_fetches_nothing(self, bulk_fetcher, fake_provider):
        fake_provider.login_payload["bearerToken"] = "x" * 40
        fake_provider.pages = [rows(3)]

        with pytest.raises(AuthError):
            await bulk_fetcher.fetch_all()

        assert fake_provider.export_requests == []
        assert bulk_fetcher.pages_fetched == 0

    @pytest.mark.asyncio
    async def test_cancelled_between_pages(self, provider_client, fake_provider):
        fetcher = BulkFetcher(provider_client, page_size=2, page_delay=0)
        fake_provider.pages = [rows(2), rows(2, start=2), rows(1, start=4)]
        token = CancellationToken()
        fake_provider.on_export_page = lambda page: token.cancel("operator request")

        with pytest.raises(SyncCancelledError) as exc:
            await fetcher.fetch_all(cancellation=token)

        assert exc.value.context["stage"] == "bulk_fetch_page_2"
        assert len(fake_provider.export_requests) == 1
