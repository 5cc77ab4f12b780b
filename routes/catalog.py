"""
Wholesaler catalog API routes.

Upload, validate and import supplier catalogs; download template, example
and export files; clear a catalog; catalog stats.

Imports stream progress as server-sent events:
    data: {"type": "progress", "progress": 40, "fraction": 0.4, ...}
    data: {"type": "complete", "report": {...}}
"""

import json
from pathlib import PurePath
from typing import AsyncIterator

import structlog
from fastapi import APIRouter, File, Form, Query, UploadFile
from fastapi.responses import JSONResponse, Response, StreamingResponse

from config import settings
from exceptions import AppError, CatalogFileTooLargeError, CatalogFileTypeError
from models.catalog import CatalogStats, ImportMode, ImportProgress, ValidationReport
from services.catalog_files import MEDIA_TYPES, check_format
from services.catalog_import_service import get_catalog_import_service
from services.import_job import ImportJob

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/wholesalers", tags=["Wholesaler Catalog"])

ALLOWED_EXTENSIONS = [".csv", ".xlsx"]


# ===================
# EXCEPTION HANDLER
# ===================

def handle_error(e: Exception) -> JSONResponse:
    """Convert exception to JSON response."""
    if isinstance(e, AppError):
        return JSONResponse(
            status_code=e.status_code,
            content=e.to_dict()
        )
    # Unexpected error
    logger.error("unexpected_error", error=str(e), type=type(e).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        }
    )


# ===================
# HELPERS
# ===================

async def read_catalog_upload(file: UploadFile) -> bytes:
    """
    Read an uploaded catalog, enforcing type and size limits.

    Raises:
        CatalogFileTypeError: Not a .csv or .xlsx file
        CatalogFileTooLargeError: Larger than catalog_max_upload_mb
    """
    suffix = PurePath(file.filename or "").suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise CatalogFileTypeError(file.filename, ALLOWED_EXTENSIONS)

    limit = settings.max_upload_bytes
    content = await file.read(limit + 1)
    if len(content) > limit:
        raise CatalogFileTooLargeError(len(content), limit)
    return content


def _file_response(content: bytes, fmt: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=MEDIA_TYPES[fmt],
        headers={"Content-Disposition": f'attachment; filename="{filename}.{fmt}"'},
    )


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _import_events(job: ImportJob) -> AsyncIterator[str]:
    """Render job events as SSE frames; errors become a final error frame."""
    try:
        async for event in job.events():
            if isinstance(event, ImportProgress):
                yield _sse({
                    "type": "progress",
                    "progress": round(event.fraction * 100),
                    **event.model_dump(mode="json"),
                })
            else:
                yield _sse({"type": "complete", "report": event.model_dump(mode="json")})
    except AppError as e:
        logger.error("import_stream_failed", job_id=job.id, code=e.code, error=e.message)
        yield _sse({"type": "error", **e.to_dict()})
    except Exception as e:
        logger.error("import_stream_failed", job_id=job.id, error=str(e), type=type(e).__name__)
        yield _sse({
            "type": "error",
            "error": {
                "code": "INTERNAL_ERROR",
                "message": "An unexpected error occurred"
            }
        })


# ===================
# TEMPLATE / EXAMPLE
# ===================

@router.get("/catalog/template")
async def download_template(format: str = Query("csv", description="csv or xlsx")):
    """Blank catalog file with the expected column headers."""
    try:
        fmt = check_format(format)
        service = get_catalog_import_service()
        return _file_response(service.template(fmt), fmt, "wholesaler_catalog_template")

    except Exception as e:
        return handle_error(e)


@router.get("/catalog/example")
async def download_example(format: str = Query("csv", description="csv or xlsx")):
    """Catalog file with sample frames, mats, glazing, hardware and mounting."""
    try:
        fmt = check_format(format)
        service = get_catalog_import_service()
        return _file_response(service.example(fmt), fmt, "wholesaler_catalog_example")

    except Exception as e:
        return handle_error(e)


# ===================
# VALIDATE / IMPORT
# ===================

@router.post("/{wholesaler_id}/catalog/validate", response_model=ValidationReport)
async def validate_catalog(wholesaler_id: str, file: UploadFile = File(...)):
    """
    Validate a catalog file without importing it.

    Every row is classified new, duplicate, update or invalid against the
    wholesaler's current catalog.
    """
    try:
        content = await read_catalog_upload(file)
        service = get_catalog_import_service()
        return service.validate(content, wholesaler_id, file.filename)

    except Exception as e:
        return handle_error(e)


@router.post("/{wholesaler_id}/catalog/import")
async def import_catalog(
    wholesaler_id: str,
    file: UploadFile = File(...),
    mode: ImportMode = Form(ImportMode.REPLACE),
):
    """
    Import a catalog file and stream progress.

    Modes:
    - replace: the file becomes the whole catalog (all or nothing)
    - append: only new product codes are added
    - update: new codes are added, changed products are overwritten

    For append and update, batches committed before a failure or a cancel
    stay committed; the final report lists every failed and unprocessed row.
    """
    try:
        content = await read_catalog_upload(file)
        service = get_catalog_import_service()
        job = service.launch_import(content, wholesaler_id, mode, file.filename)

    except Exception as e:
        return handle_error(e)

    return StreamingResponse(
        _import_events(job),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.delete("/{wholesaler_id}/catalog/import")
async def cancel_catalog_import(wholesaler_id: str):
    """Request cancellation of the running import (stops at the next batch)."""
    try:
        service = get_catalog_import_service()
        cancelled = service.cancel_import(wholesaler_id)
        return {"cancelled": cancelled}

    except Exception as e:
        return handle_error(e)


# ===================
# CATALOG
# ===================

@router.get("/{wholesaler_id}/catalog/export")
async def export_catalog(
    wholesaler_id: str,
    format: str = Query("csv", description="csv or xlsx"),
):
    """Current catalog in the import format."""
    try:
        fmt = check_format(format)
        service = get_catalog_import_service()
        content = service.export(wholesaler_id, fmt)
        return _file_response(content, fmt, f"catalog_{wholesaler_id}")

    except Exception as e:
        return handle_error(e)


@router.delete("/{wholesaler_id}/catalog")
async def clear_catalog(wholesaler_id: str):
    """Delete every product in the wholesaler's catalog."""
    try:
        service = get_catalog_import_service()
        deleted = service.clear_catalog(wholesaler_id)
        return {"deleted": deleted}

    except Exception as e:
        return handle_error(e)


@router.get("/{wholesaler_id}/catalog/stats", response_model=CatalogStats)
async def catalog_stats(wholesaler_id: str):
    """Product count, category breakdown and wholesale price range."""
    try:
        service = get_catalog_import_service()
        return service.stats(wholesaler_id)

    except Exception as e:
        return handle_error(e)

