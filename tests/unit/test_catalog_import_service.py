"""
Unit tests for CatalogImportService.

End-to-end scenarios over the in-memory store: validate, import in every
mode, round-trip through export, cancellation and locking.

Run: pytest tests/unit/test_catalog_import_service.py -v
"""

import asyncio
from decimal import Decimal

import pytest

from services.catalog_import_service import CatalogImportService
from services.import_executor import CancellationToken
from services.import_job import ImportJobState
from models.catalog import ImportMode, ImportStatus, RowStatus
from exceptions import CatalogParseError, ImportInProgressError

from tests.factories import (
    CatalogRowFactory,
    ProductRecordFactory,
    build_catalog_csv,
    build_catalog_xlsx,
)


# ===================
# VALIDATE
# ===================

class TestValidate:
    """Tests for CatalogImportService.validate()"""

    def test_counts_partition_rows(self, service):
        # Arrange
        rows = CatalogRowFactory.create_batch(4) + [
            CatalogRowFactory.create(**{"Wholesale Price": "abc"}),
            CatalogRowFactory.create(**{"Category": "wood"}),
        ]

        # Act
        report = service.validate(build_catalog_csv(rows), "w1", "catalog.csv")

        # Assert
        assert report.total_rows == 6
        assert report.valid == 4
        assert report.invalid == 2
        assert report.valid + report.invalid == report.total_rows
        assert report.new + report.duplicates + report.updates == report.valid
        assert [e.row_number for e in report.errors] == [5, 6]

    def test_bad_price_invalidates_only_that_row(self, service):
        rows = [CatalogRowFactory.create(), CatalogRowFactory.create(**{"Wholesale Price": "abc"})]

        report = service.validate(build_catalog_csv(rows), "w1", "catalog.csv")

        assert report.valid == 1
        assert report.errors[0].row_number == 2
        assert report.errors[0].errors[0].field == "wholesale_price"

    def test_repeated_code_in_file(self, service):
        """10 rows, one code repeated: 9 valid, 1 invalid, no duplicates."""
        # Arrange
        rows = CatalogRowFactory.create_batch(9) + [CatalogRowFactory.create(code="ROW-DUP")]
        rows[9] = CatalogRowFactory.create(code=rows[2]["Product Code"])

        # Act
        report = service.validate(build_catalog_csv(rows), "w1", "catalog.csv")

        # Assert
        assert report.total_rows == 10
        assert report.valid == 9
        assert report.invalid == 1
        assert report.duplicates == 0
        assert report.errors[0].row_number == 10
        assert report.errors[0].errors[0].message.startswith("Duplicate within file")

    def test_classifies_against_existing_catalog(self, service, memory_store):
        # Arrange
        memory_store.write_batch("w1", [
            ProductRecordFactory.create(
                product_code="A1",
                product_name="Catalog Item A1",
                wholesale_price=Decimal("12.50"),
                suggested_retail=Decimal("25.00"),
                lead_time="2-3 days",
            ),
        ], [])
        rows = [
            CatalogRowFactory.create(code="A1", **{"Product Name": "Catalog Item A1"}),
            CatalogRowFactory.create(code="A1-NEW"),
        ]

        # Act
        report = service.validate(build_catalog_csv(rows), "w1", "catalog.csv")

        # Assert
        assert report.duplicates == 1
        assert report.new == 1
        assert report.preview[0].status == RowStatus.DUPLICATE

    def test_validation_is_deterministic(self, service):
        content = build_catalog_csv(
            CatalogRowFactory.create_batch(3) + [CatalogRowFactory.create(**{"Pack Size": "0"})]
        )

        first = service.validate(content, "w1", "catalog.csv")
        second = service.validate(content, "w1", "catalog.csv")

        assert first.model_dump() == second.model_dump()

    def test_validate_never_writes(self, service, memory_store):
        service.validate(build_catalog_csv(CatalogRowFactory.create_batch(3)), "w1", "catalog.csv")

        assert memory_store.count("w1") == 0

    def test_preview_limits_invalid_rows(self, memory_store, clock):
        service = CatalogImportService(
            memory_store, clock=clock, preview_limit=2, invalid_preview_limit=1
        )
        rows = CatalogRowFactory.create_batch(4) + CatalogRowFactory.create_batch(
            3, **{"Wholesale Price": ""}
        )

        report = service.validate(build_catalog_csv(rows), "w1", "catalog.csv")

        assert len(report.preview) == 3
        assert len(report.errors) == 3
        assert [p.status for p in report.preview].count(RowStatus.INVALID) == 1

    def test_warnings_and_ignored_columns(self, service):
        rows = [CatalogRowFactory.create(**{"Suggested Retail": "1.00", "Notes": "call rep"})]
        headers = ["Product Code", "Product Name", "Category", "Unit Type",
                   "Wholesale Price", "Suggested Retail", "Notes"]

        report = service.validate(build_catalog_csv(rows, headers=headers), "w1", "catalog.csv")

        assert report.valid == 1
        assert report.ignored_columns == ["Notes"]
        assert report.warnings[0].field == "suggested_retail"

    def test_projected_stats(self, service):
        rows = [
            CatalogRowFactory.create(**{"Wholesale Price": "3.00"}),
            CatalogRowFactory.create(**{"Category": "mat", "Wholesale Price": "9.00"}),
            CatalogRowFactory.create(**{"Wholesale Price": "abc"}),
        ]

        report = service.validate(build_catalog_csv(rows), "w1", "catalog.csv")

        assert report.stats.total_products == 2
        assert report.stats.categories == {"frame": 1, "mat": 1}
        assert report.stats.price_range.min == Decimal("3.00")

    def test_unreadable_file_raises(self, service):
        with pytest.raises(CatalogParseError):
            service.validate(b"", "w1", "catalog.csv")


# ===================
# IMPORT
# ===================

class TestRunImport:
    """Tests for CatalogImportService.run_import()"""

    def test_replace_leaves_exactly_the_file(self, service, memory_store):
        # Arrange
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(4), [])
        rows = CatalogRowFactory.create_batch(3)

        # Act
        report = service.run_import(build_catalog_csv(rows), "w1", "replace", "catalog.csv")

        # Assert
        assert report.status == ImportStatus.COMPLETED
        assert report.inserted == 3
        assert report.deleted == 4
        assert sorted(memory_store.catalog_index("w1")) == sorted(r["Product Code"] for r in rows)

    def test_append_is_idempotent(self, service, memory_store):
        content = build_catalog_csv(CatalogRowFactory.create_batch(5))

        first = service.run_import(content, "w1", ImportMode.APPEND, "catalog.csv")
        second = service.run_import(content, "w1", ImportMode.APPEND, "catalog.csv")

        assert first.inserted == 5
        assert second.inserted == 0
        assert second.skipped == 5
        assert memory_store.count("w1") == 5

    def test_update_changes_only_changed_rows(self, service, memory_store):
        """Existing A1 at 10.00; file has A1 at 12.00 plus two new codes."""
        # Arrange
        memory_store.write_batch("w1", [
            ProductRecordFactory.create(product_code="A1", wholesale_price=Decimal("10.00")),
            ProductRecordFactory.create(product_code="Z9"),
        ], [])
        rows = [
            CatalogRowFactory.create(code="A1", **{"Wholesale Price": "12.00"}),
            CatalogRowFactory.create(code="B2"),
            CatalogRowFactory.create(code="C3"),
        ]

        # Act
        report = service.run_import(build_catalog_csv(rows), "w1", "update", "catalog.csv")

        # Assert
        catalog = memory_store.catalog_index("w1")
        assert report.updated == 1
        assert report.inserted == 2
        assert catalog["A1"].wholesale_price == Decimal("12.00")
        assert len(catalog) == 4
        assert report.notes[0].product_code == "A1"

    def test_append_keeps_existing_price(self, service, memory_store):
        memory_store.write_batch("w1", [
            ProductRecordFactory.create(product_code="A1", wholesale_price=Decimal("10.00")),
        ], [])
        rows = [
            CatalogRowFactory.create(code="A1", **{"Wholesale Price": "12.00"}),
            CatalogRowFactory.create(code="B2"),
            CatalogRowFactory.create(code="C3"),
        ]

        report = service.run_import(build_catalog_csv(rows), "w1", "append", "catalog.csv")

        catalog = memory_store.catalog_index("w1")
        assert report.inserted == 2
        assert report.skipped == 1
        assert catalog["A1"].wholesale_price == Decimal("10.00")
        assert len(catalog) == 3

    def test_invalid_rows_are_not_imported(self, service, memory_store):
        rows = CatalogRowFactory.create_batch(2) + [CatalogRowFactory.create(**{"Product Name": ""})]

        report = service.run_import(build_catalog_csv(rows), "w1", "append", "catalog.csv")

        assert report.invalid == 1
        assert report.inserted == 2
        assert memory_store.count("w1") == 2

    def test_xlsx_upload(self, service, memory_store):
        content = build_catalog_xlsx(CatalogRowFactory.create_batch(3))

        report = service.run_import(content, "w1", "replace", "catalog.xlsx")

        assert report.inserted == 3
        assert memory_store.count("w1") == 3

    def test_records_are_stamped(self, service, memory_store, fixed_now):
        service.run_import(build_catalog_csv(CatalogRowFactory.create_batch(2)), "w1", "append", "catalog.csv")

        assert service.stats("w1").last_updated == fixed_now

    @pytest.mark.parametrize("mode", list(ImportMode))
    def test_cancel_before_first_batch_changes_nothing(self, service, memory_store, mode):
        # Arrange
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(2), [])
        before = sorted(memory_store.catalog_index("w1"))
        token = CancellationToken()
        token.cancel()

        # Act
        report = service.run_import(
            build_catalog_csv(CatalogRowFactory.create_batch(4)),
            "w1", mode, "catalog.csv", cancel=token,
        )

        # Assert
        assert report.status == ImportStatus.CANCELLED
        assert sorted(memory_store.catalog_index("w1")) == before
        assert not service.locks.is_locked("w1")

    def test_concurrent_import_rejected(self, service, memory_store):
        content = build_catalog_csv(CatalogRowFactory.create_batch(2))

        with service.locks.acquire("w1"):
            with pytest.raises(ImportInProgressError):
                service.run_import(content, "w1", "replace", "catalog.csv")

        assert memory_store.count("w1") == 0

    def test_parse_failure_releases_lock(self, service):
        with pytest.raises(CatalogParseError):
            service.run_import(b"Product Code\nA1\n", "w1", "append", "catalog.csv")

        assert not service.locks.is_locked("w1")

    def test_unknown_mode_rejected(self, service):
        with pytest.raises(ValueError):
            service.run_import(b"", "w1", "merge", "catalog.csv")


class TestRoundTrip:
    """Export then re-import in update mode changes nothing."""

    @pytest.mark.parametrize("fmt", ["csv", "xlsx"])
    def test_export_reimport_is_noop(self, service, memory_store, fmt):
        # Arrange
        memory_store.write_batch("w1", [
            ProductRecordFactory.create(description="Oak, 1.5\" profile", lead_time="1 week"),
            ProductRecordFactory.create(suggested_retail=None, catalog_page="42"),
            ProductRecordFactory.create(wholesale_price=Decimal("3.5"), min_quantity=12),
        ], [])
        exported = service.export("w1", fmt)

        # Act
        report = service.run_import(exported, "w1", "update", f"export.{fmt}")

        # Assert
        assert report.inserted == 0
        assert report.updated == 0
        assert report.skipped == 3

    def test_example_file_imports_cleanly(self, service, memory_store):
        report = service.run_import(service.example("csv"), "w1", "replace", "example.csv")

        assert report.inserted == 13
        assert report.invalid == 0
        stats = service.stats("w1")
        assert stats.categories == {"frame": 3, "mat": 3, "glazing": 3, "hardware": 2, "mounting": 2}


# ===================
# JOBS / CATALOG
# ===================

class TestJobsAndCatalog:
    """start_import, cancel_import, clear_catalog and stats."""

    def test_start_import_holds_lock_until_run(self, service, memory_store):
        # Arrange
        content = build_catalog_csv(CatalogRowFactory.create_batch(3))

        # Act
        job = service.start_import(content, "w1", "append", "catalog.csv")

        # Assert
        assert job.state == ImportJobState.IMPORTING
        assert service.locks.is_locked("w1")
        assert service.active_job("w1") is job

        job.run()
        assert not service.locks.is_locked("w1")
        assert service.active_job("w1") is None
        assert memory_store.count("w1") == 3

    def test_launched_import_releases_lock_without_a_reader(self, service, memory_store):
        """A client that goes away before reading the stream leaves no lock behind."""
        content = build_catalog_csv(CatalogRowFactory.create_batch(3))

        async def launch_and_wait():
            job = service.launch_import(content, "w1", "append", "catalog.csv")
            for _ in range(500):
                if service.active_job("w1") is None:
                    break
                await asyncio.sleep(0.01)
            return job

        job = asyncio.run(launch_and_wait())

        assert job.state == ImportJobState.COMPLETED
        assert not service.locks.is_locked("w1")
        assert memory_store.count("w1") == 3
        # The next import is not blocked
        assert service.run_import(content, "w1", "append", "catalog.csv").skipped == 3

    def test_launch_outside_event_loop_takes_no_lock(self, service):
        content = build_catalog_csv(CatalogRowFactory.create_batch(1))

        with pytest.raises(RuntimeError):
            service.launch_import(content, "w1", "append", "catalog.csv")

        assert not service.locks.is_locked("w1")

    def test_cancel_import_without_job(self, service):
        assert service.cancel_import("w1") is False

    def test_cancel_started_job(self, service, memory_store):
        job = service.start_import(
            build_catalog_csv(CatalogRowFactory.create_batch(3)), "w1", "append", "catalog.csv"
        )

        assert service.cancel_import("w1") is True
        report = job.run()

        assert report.status == ImportStatus.CANCELLED
        assert memory_store.count("w1") == 0

    def test_clear_catalog(self, service, memory_store):
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(4), [])

        assert service.clear_catalog("w1") == 4
        assert service.stats("w1").total_products == 0

    def test_clear_rejected_during_import(self, service, memory_store):
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(2), [])

        with service.locks.acquire("w1"):
            with pytest.raises(ImportInProgressError):
                service.clear_catalog("w1")

        assert memory_store.count("w1") == 2

    def test_stats_of_empty_catalog(self, service):
        stats = service.stats("nobody")

        assert stats.total_products == 0
        assert stats.price_range is None
