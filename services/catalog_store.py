"""
Catalog storage boundary.

The import engine only talks to a CatalogStore. Two implementations:

    InMemoryCatalogStore  process-local dicts, used by default and in tests
    SupabaseCatalogStore  wholesaler_products table in Supabase

Both honour the same contract:
    - write_batch() commits one batch atomically or raises ImportBatchError
    - begin_replace() stages a whole new catalog; readers keep seeing the
      old catalog until commit() swaps it in
"""

import threading
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Iterable, Optional
from uuid import uuid4

import structlog

from config import get_supabase_client, settings
from exceptions import DatabaseError, ImportBatchError
from models.catalog import CONTENT_FIELDS, ProductRecord

logger = structlog.get_logger(__name__)


class CatalogReplacement(ABC):
    """A staged catalog that becomes visible only on commit()."""

    @abstractmethod
    def write(self, records: list[ProductRecord]) -> None:
        """Stage one batch. Raises ImportBatchError on failure."""

    @abstractmethod
    def commit(self) -> int:
        """Swap the staged catalog in. Returns rows removed from the old one."""

    @abstractmethod
    def rollback(self) -> None:
        """Discard everything staged."""


class CatalogStore(ABC):
    """Read/write access to wholesaler catalogs keyed by product code."""

    @abstractmethod
    def list_products(self, wholesaler_id: str) -> list[ProductRecord]:
        ...

    @abstractmethod
    def get_products_by_code(
        self,
        wholesaler_id: str,
        codes: Iterable[str],
    ) -> dict[str, ProductRecord]:
        """Existing records for the given codes; unknown codes are absent."""

    @abstractmethod
    def write_batch(
        self,
        wholesaler_id: str,
        inserts: list[ProductRecord],
        updates: list[ProductRecord],
    ) -> None:
        """Insert new codes and overwrite existing ones as one commit."""

    @abstractmethod
    def begin_replace(self, wholesaler_id: str) -> CatalogReplacement:
        ...

    @abstractmethod
    def delete_catalog(self, wholesaler_id: str) -> int:
        ...

    def catalog_index(self, wholesaler_id: str) -> dict[str, ProductRecord]:
        """Existing catalog keyed by product code."""
        return {r.product_code: r for r in self.list_products(wholesaler_id)}

    def count(self, wholesaler_id: str) -> int:
        return len(self.list_products(wholesaler_id))


# ===================
# IN-MEMORY STORE
# ===================

class _InMemoryReplacement(CatalogReplacement):

    def __init__(self, store: "InMemoryCatalogStore", wholesaler_id: str):
        self._store = store
        self._wholesaler_id = wholesaler_id
        self._shadow: dict[str, ProductRecord] = {}

    def write(self, records: list[ProductRecord]) -> None:
        for record in records:
            if record.product_code in self._shadow:
                raise ImportBatchError(f"Duplicate product code {record.product_code}")
        for record in records:
            self._shadow[record.product_code] = record

    def commit(self) -> int:
        return self._store._swap(self._wholesaler_id, self._shadow)

    def rollback(self) -> None:
        self._shadow = {}


class InMemoryCatalogStore(CatalogStore):
    """
    Catalogs held in process memory.

    A single lock guards all catalogs; every read and every batch runs under
    it, so readers never see half a batch or half a replace.
    """

    def __init__(self) -> None:
        self._catalogs: dict[str, dict[str, ProductRecord]] = {}
        self._lock = threading.RLock()

    def list_products(self, wholesaler_id: str) -> list[ProductRecord]:
        with self._lock:
            return list(self._catalogs.get(wholesaler_id, {}).values())

    def get_products_by_code(
        self,
        wholesaler_id: str,
        codes: Iterable[str],
    ) -> dict[str, ProductRecord]:
        with self._lock:
            catalog = self._catalogs.get(wholesaler_id, {})
            return {code: catalog[code] for code in codes if code in catalog}

    def write_batch(
        self,
        wholesaler_id: str,
        inserts: list[ProductRecord],
        updates: list[ProductRecord],
    ) -> None:
        with self._lock:
            catalog = self._catalogs.setdefault(wholesaler_id, {})
            batch_codes: set[str] = set()

            for record in inserts:
                if record.product_code in catalog or record.product_code in batch_codes:
                    raise ImportBatchError(f"Product code {record.product_code} already exists")
                batch_codes.add(record.product_code)
            for record in updates:
                if record.product_code not in catalog:
                    raise ImportBatchError(f"Product code {record.product_code} not found for update")

            for record in [*inserts, *updates]:
                catalog[record.product_code] = record

    def begin_replace(self, wholesaler_id: str) -> CatalogReplacement:
        return _InMemoryReplacement(self, wholesaler_id)

    def delete_catalog(self, wholesaler_id: str) -> int:
        with self._lock:
            return len(self._catalogs.pop(wholesaler_id, {}))

    def _swap(self, wholesaler_id: str, catalog: dict[str, ProductRecord]) -> int:
        with self._lock:
            previous = self._catalogs.get(wholesaler_id, {})
            self._catalogs[wholesaler_id] = dict(catalog)
            return len(previous)


# ===================
# SUPABASE STORE
# ===================

def _to_row(wholesaler_id: str, record: ProductRecord, **extra: Any) -> dict:
    row: dict[str, Any] = {"wholesaler_id": wholesaler_id, **extra}
    for name in CONTENT_FIELDS:
        value = getattr(record, name)
        if isinstance(value, Decimal):
            value = float(value)
        elif hasattr(value, "value"):
            value = value.value
        row[name] = value
    row["last_updated"] = record.last_updated.isoformat() if record.last_updated else None
    return row


def _from_row(row: dict) -> ProductRecord:
    data = {name: row.get(name) for name in CONTENT_FIELDS}
    for name in ("wholesale_price", "suggested_retail"):
        if data[name] is not None:
            data[name] = Decimal(str(data[name]))
    data["last_updated"] = row.get("last_updated")
    return ProductRecord(**data)


class _SupabaseReplacement(CatalogReplacement):
    """
    Shadow-write then swap.

    Batches go to wholesaler_products_staging under a fresh import_id; the
    swap_wholesaler_catalog() Postgres function deletes the live catalog and
    moves the staged rows in within one transaction.
    """

    def __init__(self, store: "SupabaseCatalogStore", wholesaler_id: str):
        self._store = store
        self._wholesaler_id = wholesaler_id
        self.import_id = str(uuid4())

    def write(self, records: list[ProductRecord]) -> None:
        rows = [
            _to_row(self._wholesaler_id, r, import_id=self.import_id)
            for r in records
        ]
        try:
            self._store.db.table(self._store.staging_table).insert(rows).execute()
        except Exception as e:
            logger.error("catalog_stage_failed", import_id=self.import_id, error=str(e))
            raise ImportBatchError(str(e)) from e

    def commit(self) -> int:
        try:
            result = self._store.db.rpc(
                "swap_wholesaler_catalog",
                {"p_wholesaler_id": self._wholesaler_id, "p_import_id": self.import_id}
            ).execute()
        except Exception as e:
            logger.error("catalog_swap_failed", import_id=self.import_id, error=str(e))
            raise ImportBatchError(f"Catalog swap failed: {e}") from e
        return int(result.data or 0)

    def rollback(self) -> None:
        try:
            (
                self._store.db.table(self._store.staging_table)
                .delete()
                .eq("import_id", self.import_id)
                .execute()
            )
        except Exception as e:
            # Staged rows are invisible to readers; a leftover batch only wastes space
            logger.warning("catalog_stage_cleanup_failed", import_id=self.import_id, error=str(e))


class SupabaseCatalogStore(CatalogStore):
    """Catalog rows in the wholesaler_products table."""

    page_size = 1000

    def __init__(self, client: Optional[Any] = None):
        self.db = client or get_supabase_client()
        self.table = "wholesaler_products"
        self.staging_table = "wholesaler_products_staging"

    def list_products(self, wholesaler_id: str) -> list[ProductRecord]:
        logger.debug("listing_catalog", wholesaler_id=wholesaler_id)

        records: list[ProductRecord] = []
        offset = 0
        try:
            while True:
                result = (
                    self.db.table(self.table)
                    .select("*")
                    .eq("wholesaler_id", wholesaler_id)
                    .order("product_code")
                    .range(offset, offset + self.page_size - 1)
                    .execute()
                )
                records.extend(_from_row(row) for row in result.data)
                if len(result.data) < self.page_size:
                    break
                offset += self.page_size
        except Exception as e:
            logger.error("list_catalog_failed", wholesaler_id=wholesaler_id, error=str(e))
            raise DatabaseError("select", str(e))

        return records

    def get_products_by_code(
        self,
        wholesaler_id: str,
        codes: Iterable[str],
    ) -> dict[str, ProductRecord]:
        codes = list(dict.fromkeys(codes))
        found: dict[str, ProductRecord] = {}

        # Keep IN lists short enough for the PostgREST URL
        try:
            for start in range(0, len(codes), 200):
                chunk = codes[start:start + 200]
                result = (
                    self.db.table(self.table)
                    .select("*")
                    .eq("wholesaler_id", wholesaler_id)
                    .in_("product_code", chunk)
                    .execute()
                )
                for row in result.data:
                    record = _from_row(row)
                    found[record.product_code] = record
        except Exception as e:
            logger.error("get_products_by_code_failed", wholesaler_id=wholesaler_id, error=str(e))
            raise DatabaseError("select", str(e))

        return found

    def write_batch(
        self,
        wholesaler_id: str,
        inserts: list[ProductRecord],
        updates: list[ProductRecord],
    ) -> None:
        rows = [_to_row(wholesaler_id, r) for r in [*inserts, *updates]]
        if not rows:
            return

        # One upsert statement is one transaction on the Postgres side
        try:
            (
                self.db.table(self.table)
                .upsert(rows, on_conflict="wholesaler_id,product_code")
                .execute()
            )
        except Exception as e:
            logger.error(
                "catalog_batch_write_failed",
                wholesaler_id=wholesaler_id,
                rows=len(rows),
                error=str(e)
            )
            raise ImportBatchError(str(e)) from e

    def begin_replace(self, wholesaler_id: str) -> CatalogReplacement:
        return _SupabaseReplacement(self, wholesaler_id)

    def delete_catalog(self, wholesaler_id: str) -> int:
        try:
            result = (
                self.db.table(self.table)
                .delete(count="exact")
                .eq("wholesaler_id", wholesaler_id)
                .execute()
            )
            return result.count or 0
        except Exception as e:
            logger.error("delete_catalog_failed", wholesaler_id=wholesaler_id, error=str(e))
            raise DatabaseError("delete", str(e))


# Singleton instance for convenience
_catalog_store: Optional[CatalogStore] = None


def get_catalog_store() -> CatalogStore:
    """Get or create the configured CatalogStore."""
    global _catalog_store
    if _catalog_store is None:
        if settings.catalog_store == "supabase":
            _catalog_store = SupabaseCatalogStore()
        else:
            _catalog_store = InMemoryCatalogStore()
        logger.info("catalog_store_ready", store=settings.catalog_store)
    return _catalog_store
