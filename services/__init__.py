"""
Business logic services.

The catalog import pipeline, leaves first:
    catalog_validation -> reconciliation -> import_executor -> import_job
with catalog_store as the storage boundary and catalog_import_service as
the entry point.
"""

from services.catalog_store import (
    CatalogStore,
    CatalogReplacement,
    InMemoryCatalogStore,
    SupabaseCatalogStore,
    get_catalog_store,
)
from services.import_executor import (
    CancellationToken,
    ImportExecutor,
    ImportLease,
    ProgressChannel,
    WholesalerLocks,
)
from services.import_job import ImportJob, ImportJobState
from services.catalog_import_service import (
    CatalogImportService,
    get_catalog_import_service,
)

__all__ = [
    "CatalogStore",
    "CatalogReplacement",
    "InMemoryCatalogStore",
    "SupabaseCatalogStore",
    "get_catalog_store",
    "CancellationToken",
    "ImportExecutor",
    "ImportLease",
    "ProgressChannel",
    "WholesalerLocks",
    "ImportJob",
    "ImportJobState",
    "CatalogImportService",
    "get_catalog_import_service",
]
