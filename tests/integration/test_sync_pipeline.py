"""
End-to-end sync pipeline tests against the fake provider
"""

import pytest
from sqlalchemy import func, select

from ingestion.runner import SyncOptions
from ingestion.sync_log import SyncRunLog
from models.aircraft import Aircraft, AircraftEnrichment, AircraftImage
from models.base import AircraftStatus, SyncStatus, SyncType
from tests.fakes import make_categories, make_raw_record


def seed_provider(fake_provider, ids=(1001, 1002, 1003), page_size=2):
    records = [make_raw_record(aircraft_id) for aircraft_id in ids]
    fake_provider.pages = [records[i:i + page_size] for i in range(0, len(records), page_size)]
    for aircraft_id in ids:
        fake_provider.categories[aircraft_id] = make_categories(aircraft_id)


async def count(db, model, *where):
    return await db.scalar(select(func.count()).select_from(model).where(*where))


async def aircraft_by_provider_id(db, provider_id):
    result = await db.execute(select(Aircraft).where(Aircraft.provider_aircraft_id == provider_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_comprehensive_sync_end_to_end(db_session, fake_provider, make_runner):
    """Fetch, normalize, enrich and reconcile three aircraft over two pages"""
    seed_provider(fake_provider)
    fake_provider.pictures[1001] = [{"url": "https://cdn.test/1001.jpg"}]

    result = await make_runner().run(SyncOptions(sync_type=SyncType.COMPREHENSIVE))

    assert result["status"] == "COMPLETED"
    assert result["records_fetched"] == 3
    assert result["records_processed"] == 3
    assert result["records_created"] == 3
    assert result["records_failed"] == 0
    assert result["pages_fetched"] == 2
    assert fake_provider.login_calls == 1

    aircraft = await aircraft_by_provider_id(db_session, 1001)
    assert aircraft.year == 2015
    assert aircraft.price == 2500000
    assert aircraft.status == AircraftStatus.AVAILABLE
    assert aircraft.for_sale is True
    assert aircraft.base_icao_code == "KTEB"
    assert aircraft.passengers == 14
    assert aircraft.tech_summary["avionics_suite"] == "PlaneView II"
    assert aircraft.specifications["interior"] == {"year": 2019, "passengers": 14}
    assert aircraft.contact_info["relationships"][0]["company"] == "Acme Aviation"
    assert aircraft.last_enriched_at is not None

    assert await count(db_session, AircraftEnrichment) == 33
    images = (await db_session.execute(
        select(AircraftImage).where(AircraftImage.aircraft_id == aircraft.id)
    )).scalars().all()
    assert [image.url for image in images] == ["https://cdn.test/1001.jpg"]

    other = await aircraft_by_provider_id(db_session, 1002)
    placeholder = (await db_session.execute(
        select(AircraftImage).where(AircraftImage.aircraft_id == other.id)
    )).scalar_one()
    assert placeholder.is_placeholder

    run = await SyncRunLog(db_session).get(result["run_id"])
    assert run.status == SyncStatus.COMPLETED
    assert run.records_created == 3
    assert run.run_metadata["pages_fetched"] == 2
    assert run.config_snapshot["sync_type"] == "COMPREHENSIVE"


@pytest.mark.asyncio
async def test_second_run_is_idempotent(db_session, fake_provider, make_runner):
    seed_provider(fake_provider)

    await make_runner().run(SyncOptions())
    second = await make_runner().run(SyncOptions())

    assert second["status"] == "COMPLETED"
    assert second["records_created"] == 0
    assert second["records_updated"] == 0
    assert second["records_unchanged"] == 3
    assert await count(db_session, Aircraft) == 3
    assert await count(db_session, AircraftEnrichment) == 33
    assert await count(db_session, AircraftImage) == 3


@pytest.mark.asyncio
async def test_force_refresh_updates_unchanged_records(db_session, fake_provider, make_runner):
    seed_provider(fake_provider)

    await make_runner().run(SyncOptions())
    forced = await make_runner().run(SyncOptions(force_refresh=True))

    assert forced["records_updated"] == 3
    assert forced["records_unchanged"] == 0
    assert await count(db_session, Aircraft) == 3


@pytest.mark.asyncio
async def test_enrichment_failures_do_not_fail_record(db_session, fake_provider, make_runner):
    """Three failing categories still persist the other eight and the record"""
    seed_provider(fake_provider, ids=(1001,))
    fake_provider.failing_categories = {"engines", "interior", "maintenance"}

    result = await make_runner().run(SyncOptions())

    assert result["status"] == "COMPLETED"
    assert result["records_processed"] == 1
    assert result["records_failed"] == 0
    assert result["enrichment_errors"] == {"engines": 1, "interior": 1, "maintenance": 1}

    aircraft = await aircraft_by_provider_id(db_session, 1001)
    rows = (await db_session.execute(
        select(AircraftEnrichment.category).where(AircraftEnrichment.aircraft_id == aircraft.id)
    )).scalars().all()
    assert len(rows) == 8
    assert not {"engines", "interior", "maintenance"} & set(rows)
    assert aircraft.tech_summary["engines"] == 0

    run = await SyncRunLog(db_session).get(result["run_id"])
    assert run.run_metadata["enrichment_errors"]["engines"] == 1


@pytest.mark.asyncio
async def test_unauthorized_category_does_not_fail_run(db_session, fake_provider, make_runner):
    """A sub-resource rejected even after re-login only drops that category"""
    seed_provider(fake_provider, ids=(1001,))
    fake_provider.forbidden_categories = {"relationships"}

    result = await make_runner().run(SyncOptions(sync_type=SyncType.COMPREHENSIVE))

    assert result["status"] == "COMPLETED"
    assert result["records_created"] == 1
    assert result["enrichment_errors"] == {"relationships": 1}

    aircraft = await aircraft_by_provider_id(db_session, 1001)
    rows = (await db_session.execute(
        select(AircraftEnrichment.category).where(AircraftEnrichment.aircraft_id == aircraft.id)
    )).scalars().all()
    assert len(rows) == 10
    assert "relationships" not in rows


@pytest.mark.asyncio
async def test_bulk_sync_skips_enrichment(db_session, fake_provider, make_runner):
    seed_provider(fake_provider)

    result = await make_runner().run(SyncOptions(sync_type=SyncType.BULK))

    assert result["status"] == "COMPLETED"
    assert result["records_created"] == 3
    assert fake_provider.category_requests == []
    assert await count(db_session, AircraftEnrichment) == 0
    assert await count(db_session, AircraftImage, AircraftImage.is_placeholder.is_(True)) == 3

    aircraft = await aircraft_by_provider_id(db_session, 1001)
    assert aircraft.last_enriched_at is None


@pytest.mark.asyncio
async def test_enrichment_sync_uses_stored_aircraft(db_session, fake_provider, make_runner):
    seed_provider(fake_provider)
    await make_runner().run(SyncOptions(sync_type=SyncType.BULK))
    exports_after_bulk = len(fake_provider.export_requests)

    result = await make_runner().run(SyncOptions(sync_type=SyncType.ENRICHMENT))

    assert result["status"] == "COMPLETED"
    assert result["records_fetched"] == 3
    assert result["records_updated"] == 3
    assert len(fake_provider.export_requests) == exports_after_bulk
    assert await count(db_session, AircraftEnrichment) == 33
    assert await count(db_session, Aircraft, Aircraft.last_enriched_at.is_(None)) == 0

    # Freshly enriched aircraft are not selected again
    again = await make_runner().run(SyncOptions(sync_type=SyncType.ENRICHMENT))
    assert again["records_fetched"] == 0


@pytest.mark.asyncio
async def test_enrichment_sync_for_explicit_ids(db_session, fake_provider, make_runner):
    seed_provider(fake_provider)
    await make_runner().run(SyncOptions(sync_type=SyncType.BULK))

    result = await make_runner().run(
        SyncOptions(sync_type=SyncType.ENRICHMENT, aircraft_ids=[1002])
    )

    assert result["records_fetched"] == 1
    assert result["records_updated"] == 1
    assert set(fake_provider.category_requests) >= {"engines", "images"}
    assert len(fake_provider.category_requests) == 12


@pytest.mark.asyncio
async def test_normalization_failures_complete_with_errors(db_session, fake_provider, make_runner):
    fake_provider.pages = [[make_raw_record(1001), make_raw_record(None), "not a record"]]

    result = await make_runner(page_size=5).run(SyncOptions(sync_type=SyncType.BULK))

    assert result["status"] == "COMPLETED_WITH_ERRORS"
    assert result["records_fetched"] == 3
    assert result["records_processed"] == 3
    assert result["records_created"] == 1
    assert result["records_failed"] == 2
    assert {detail["phase"] for detail in result["error_details"]} == {"normalization"}

    run = await SyncRunLog(db_session).get(result["run_id"])
    assert run.status == SyncStatus.COMPLETED_WITH_ERRORS
    assert run.error_message == "2 records failed"


@pytest.mark.asyncio
async def test_serial_only_record_updates_existing_row(db_session, fake_provider, make_runner):
    """A record without provider id matching a stored serial takes the update path"""
    fake_provider.pages = [[make_raw_record(1001)]]
    await make_runner().run(SyncOptions(sync_type=SyncType.BULK))

    fake_provider.pages = [[make_raw_record(None, sernbr="SN-1001", askingprice="2400000")]]
    result = await make_runner().run(SyncOptions(sync_type=SyncType.BULK))

    assert result["records_updated"] == 1
    assert result["records_created"] == 0
    assert await count(db_session, Aircraft) == 1
    aircraft = await aircraft_by_provider_id(db_session, 1001)
    assert aircraft.asking_price == 2400000
    assert aircraft.registration == "N1001GA"
