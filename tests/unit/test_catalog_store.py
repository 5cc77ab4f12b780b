"""
Unit tests for catalog stores.

Run: pytest tests/unit/test_catalog_store.py -v
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from services.catalog_store import InMemoryCatalogStore, SupabaseCatalogStore
from exceptions import DatabaseError, ImportBatchError

from tests.factories import ProductRecordFactory


# ===================
# IN-MEMORY STORE
# ===================

class TestInMemoryWriteBatch:
    """Tests for InMemoryCatalogStore.write_batch()"""

    def test_inserts_and_updates(self, memory_store):
        # Arrange
        original = ProductRecordFactory.create(product_code="A1")
        memory_store.write_batch("w1", [original], [])
        changed = original.model_copy(update={"wholesale_price": Decimal("11.00")})
        fresh = ProductRecordFactory.create(product_code="B2")

        # Act
        memory_store.write_batch("w1", [fresh], [changed])

        # Assert
        index = memory_store.catalog_index("w1")
        assert set(index) == {"A1", "B2"}
        assert index["A1"].wholesale_price == Decimal("11.00")

    def test_insert_of_existing_code_fails_whole_batch(self, memory_store):
        """Nothing from a failed batch is written."""
        memory_store.write_batch("w1", [ProductRecordFactory.create(product_code="A1")], [])

        with pytest.raises(ImportBatchError, match="A1 already exists"):
            memory_store.write_batch("w1", [
                ProductRecordFactory.create(product_code="B2"),
                ProductRecordFactory.create(product_code="A1"),
            ], [])

        assert memory_store.count("w1") == 1

    def test_update_of_missing_code_fails(self, memory_store):
        with pytest.raises(ImportBatchError, match="not found for update"):
            memory_store.write_batch("w1", [], [ProductRecordFactory.create(product_code="Q1")])

    def test_catalogs_are_isolated_per_wholesaler(self, memory_store):
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(3), [])
        memory_store.write_batch("w2", ProductRecordFactory.create_batch(1), [])

        assert memory_store.count("w1") == 3
        assert memory_store.count("w2") == 1
        assert memory_store.count("w3") == 0

    def test_get_products_by_code(self, memory_store):
        memory_store.write_batch("w1", [
            ProductRecordFactory.create(product_code="A1"),
            ProductRecordFactory.create(product_code="B2"),
        ], [])

        found = memory_store.get_products_by_code("w1", ["A1", "ZZ"])

        assert list(found) == ["A1"]


class TestInMemoryReplace:
    """Tests for InMemoryCatalogStore.begin_replace()"""

    def test_staged_rows_invisible_until_commit(self, memory_store):
        # Arrange
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(4), [])
        replacement = memory_store.begin_replace("w1")

        # Act
        replacement.write(ProductRecordFactory.create_batch(2))

        # Assert
        assert memory_store.count("w1") == 4
        assert replacement.commit() == 4
        assert memory_store.count("w1") == 2

    def test_rollback_keeps_old_catalog(self, memory_store):
        old = ProductRecordFactory.create_batch(3)
        memory_store.write_batch("w1", old, [])
        replacement = memory_store.begin_replace("w1")
        replacement.write(ProductRecordFactory.create_batch(5))

        replacement.rollback()

        assert sorted(memory_store.catalog_index("w1")) == sorted(r.product_code for r in old)

    def test_duplicate_code_across_batches_fails(self, memory_store):
        replacement = memory_store.begin_replace("w1")
        replacement.write([ProductRecordFactory.create(product_code="A1")])

        with pytest.raises(ImportBatchError):
            replacement.write([ProductRecordFactory.create(product_code="A1")])

    def test_empty_commit_clears_catalog(self, memory_store):
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(2), [])

        removed = memory_store.begin_replace("w1").commit()

        assert removed == 2
        assert memory_store.count("w1") == 0

    def test_delete_catalog_returns_count(self, memory_store):
        memory_store.write_batch("w1", ProductRecordFactory.create_batch(3), [])

        assert memory_store.delete_catalog("w1") == 3
        assert memory_store.delete_catalog("w1") == 0


# ===================
# SUPABASE STORE
# ===================

def product_row(code: str, **overrides) -> dict:
    row = {
        "wholesaler_id": "w1",
        "product_code": code,
        "product_name": f"Moulding {code}",
        "category": "frame",
        "subcategory": "wood",
        "description": None,
        "unit_type": "linear_foot",
        "wholesale_price": 12.5,
        "suggested_retail": 25.0,
        "min_quantity": 1,
        "pack_size": 1,
        "lead_time": None,
        "stock_status": "available",
        "catalog_page": None,
        "last_updated": "2025-03-01T12:00:00+00:00",
    }
    row.update(overrides)
    return row


class TestSupabaseCatalogStore:
    """Tests for SupabaseCatalogStore against the mock client."""

    def test_list_products_maps_rows(self, mock_db):
        # Arrange
        mock_db.set_table_data("wholesaler_products", [
            product_row("B2"),
            product_row("A1", wholesale_price=3.1),
            product_row("C3", wholesaler_id="w2"),
        ])
        store = SupabaseCatalogStore()

        # Act
        records = store.list_products("w1")

        # Assert
        assert [r.product_code for r in records] == ["A1", "B2"]
        assert records[0].wholesale_price == Decimal("3.1")
        assert records[0].last_updated is not None

    def test_list_failure_raises_database_error(self, mock_db):
        mock_db.fail("wholesaler_products", "select", RuntimeError("timeout"))

        with pytest.raises(DatabaseError):
            SupabaseCatalogStore().list_products("w1")

    def test_get_products_by_code_filters(self, mock_db):
        mock_db.set_table_data("wholesaler_products", [product_row("A1"), product_row("B2")])

        found = SupabaseCatalogStore().get_products_by_code("w1", ["B2", "B2", "Z9"])

        assert list(found) == ["B2"]
        select = mock_db.calls_for("wholesaler_products", "select")[0]
        assert ("in", "product_code", ["B2", "Z9"]) in select["filters"]

    def test_write_batch_upserts_on_code(self, mock_supabase):
        # Arrange
        store = SupabaseCatalogStore(client=mock_supabase)
        records = [ProductRecordFactory.create(product_code="A1")]

        # Act
        store.write_batch("w1", records, [ProductRecordFactory.create(product_code="B2")])

        # Assert
        call = mock_supabase.calls_for("wholesaler_products", "upsert")[0]
        assert ("on_conflict", "wholesaler_id,product_code") in call["filters"]
        assert [row["product_code"] for row in call["payload"]] == ["A1", "B2"]
        assert call["payload"][0]["wholesaler_id"] == "w1"
        assert call["payload"][0]["category"] == "frame"
        assert call["payload"][0]["wholesale_price"] == 10.0

    def test_empty_batch_is_noop(self, mock_supabase):
        SupabaseCatalogStore(client=mock_supabase).write_batch("w1", [], [])

        assert mock_supabase.calls == []

    def test_write_failure_raises_batch_error(self, mock_supabase):
        mock_supabase.fail("wholesaler_products", "upsert", RuntimeError("constraint violated"))
        store = SupabaseCatalogStore(client=mock_supabase)

        with pytest.raises(ImportBatchError, match="constraint violated"):
            store.write_batch("w1", [ProductRecordFactory.create()], [])

    def test_replace_stages_then_swaps(self, mock_supabase):
        # Arrange
        mock_supabase.rpc_results["swap_wholesaler_catalog"] = 7
        store = SupabaseCatalogStore(client=mock_supabase)
        replacement = store.begin_replace("w1")

        # Act
        replacement.write(ProductRecordFactory.create_batch(2))
        removed = replacement.commit()

        # Assert
        staged = mock_supabase.calls_for("wholesaler_products_staging", "insert")[0]
        assert all(row["import_id"] == replacement.import_id for row in staged["payload"])
        assert mock_supabase.calls_for("wholesaler_products", "upsert") == []
        rpc = mock_supabase.calls[-1]
        assert rpc["rpc"] == "swap_wholesaler_catalog"
        assert rpc["params"] == {"p_wholesaler_id": "w1", "p_import_id": replacement.import_id}
        assert removed == 7

    def test_replace_touches_only_staging_before_commit(self, mock_supabase):
        """The live table is not written or deleted from until the swap."""
        store = SupabaseCatalogStore(client=mock_supabase)
        replacement = store.begin_replace("w1")

        replacement.write(ProductRecordFactory.create_batch(2))
        replacement.write(ProductRecordFactory.create_batch(2))

        assert {c.get("table") for c in mock_supabase.calls} == {"wholesaler_products_staging"}
        assert not any("rpc" in c for c in mock_supabase.calls)
        assert len(mock_supabase.calls_for("wholesaler_products_staging", "insert")) == 2

        replacement.commit()

        assert mock_supabase.calls[-1]["rpc"] == "swap_wholesaler_catalog"

    def test_staging_failure_raises_batch_error(self, mock_supabase):
        mock_supabase.fail("wholesaler_products_staging", "insert", RuntimeError("disk full"))
        replacement = SupabaseCatalogStore(client=mock_supabase).begin_replace("w1")

        with pytest.raises(ImportBatchError):
            replacement.write(ProductRecordFactory.create_batch(1))

    def test_swap_failure_raises_batch_error(self, mock_supabase):
        mock_supabase.fail("rpc", "swap_wholesaler_catalog", RuntimeError("deadlock"))
        replacement = SupabaseCatalogStore(client=mock_supabase).begin_replace("w1")

        with pytest.raises(ImportBatchError, match="Catalog swap failed"):
            replacement.commit()

    def test_rollback_deletes_staged_rows(self, mock_supabase):
        replacement = SupabaseCatalogStore(client=mock_supabase).begin_replace("w1")

        replacement.rollback()

        call = mock_supabase.calls_for("wholesaler_products_staging", "delete")[0]
        assert ("eq", "import_id", replacement.import_id) in call["filters"]

    def test_rollback_failure_is_not_raised(self, mock_supabase):
        mock_supabase.fail("wholesaler_products_staging", "delete", RuntimeError("gone"))
        replacement = SupabaseCatalogStore(client=mock_supabase).begin_replace("w1")

        replacement.rollback()

    def test_delete_catalog_returns_count(self, mock_supabase):
        mock_supabase.set_table_data("wholesaler_products", [
            product_row("A1"), product_row("B2"), product_row("C3", wholesaler_id="w2")
        ])

        deleted = SupabaseCatalogStore(client=mock_supabase).delete_catalog("w1")

        assert deleted == 2


# ===================
# SUPABASE CLIENT
# ===================

class TestSupabaseClient:
    """Tests for config.database.get_supabase_client()"""

    def test_unconfigured_client_raises_coded_error(self):
        """Misconfiguration surfaces as DATABASE_ERROR, not a generic failure."""
        from config.database import get_supabase_client, reset_connection

        reset_connection()
        with patch("config.database.settings") as mock_settings:
            mock_settings.supabase_configured = False

            with pytest.raises(DatabaseError) as exc_info:
                get_supabase_client()

        reset_connection()
        assert exc_info.value.code == "DATABASE_ERROR"
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["operation"] == "connect"
