"""Backup export, import and data reset route handlers."""

import asyncio
import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from shuttle_ledger.api.routes import BACKUP_RATE_LIMIT, limiter, to_http_error
from shuttle_ledger.api.auth_dependencies import get_current_organizer
from shuttle_ledger.database.db import get_db_session
from shuttle_ledger.models.schemas import ConflictResolution, ExportRequest, ExportType, ResetRequest
from shuttle_ledger.services import (
    backup_export_service,
    backup_import_service,
    data_reset_service,
)

logger = logging.getLogger(__name__)
router = APIRouter()

# Cancellation handles for imports in progress, one per organizer
_running_imports: Dict[str, asyncio.Event] = {}


@router.post("/api/backup/export")
@limiter.limit(BACKUP_RATE_LIMIT)
async def export_backup(
    request: Request,
    payload: ExportRequest,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Download the organizer's data as a JSON archive."""
    try:
        result = await backup_export_service.export_organizer_data(
            session,
            organizer_id,
            export_type=payload.export_type,
            date_from=payload.date_from,
            date_to=payload.date_to,
            include=payload.include,
        )
    except Exception as e:
        raise to_http_error(e, "exporting backup")

    if not result["success"]:
        raise HTTPException(status_code=500, detail=result["message"])
    return Response(
        content=backup_export_service.serialize_archive(result["archive"]),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{result["filename"]}"'},
    )


@router.get("/api/backup/export/preview")
async def get_export_preview(
    export_type: ExportType = "full_backup",
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    include: Optional[List[str]] = Query(None),
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Record counts and an estimated file size for an export."""
    try:
        return await backup_export_service.get_export_preview(
            session,
            organizer_id,
            export_type=export_type,
            date_from=date_from,
            date_to=date_to,
            include=include,
        )
    except Exception as e:
        raise to_http_error(e, "previewing export")


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    await file.close()
    return content


@router.post("/api/backup/validate")
@limiter.limit(BACKUP_RATE_LIMIT)
async def validate_backup(
    request: Request,
    file: UploadFile = File(...),
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Check an archive and report what an import would do, writing nothing."""
    try:
        content = await _read_upload(file)
        return await backup_import_service.import_backup_file(
            session, organizer_id, file.filename or "", content, validate_only=True
        )
    except Exception as e:
        raise to_http_error(e, "validating backup")


@router.post("/api/backup/import")
@limiter.limit(BACKUP_RATE_LIMIT)
async def import_backup(
    request: Request,
    file: UploadFile = File(...),
    conflict_resolution: ConflictResolution = Form("skip_duplicates"),
    clear_existing_data: bool = Form(False),
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """
    Import an archive into the organizer's scope.

    Form fields: file, conflict_resolution (skip_duplicates, replace_duplicates,
    merge_data), clear_existing_data. Partial failures are reported in the
    result; only unreadable files are rejected.
    """
    if organizer_id in _running_imports:
        raise HTTPException(status_code=409, detail="An import is already running")
    cancel_event = asyncio.Event()
    _running_imports[organizer_id] = cancel_event
    try:
        content = await _read_upload(file)
        return await backup_import_service.import_backup_file(
            session,
            organizer_id,
            file.filename or "",
            content,
            conflict_resolution=conflict_resolution,
            clear_existing_data=clear_existing_data,
            cancel_event=cancel_event,
        )
    except Exception as e:
        raise to_http_error(e, "importing backup")
    finally:
        _running_imports.pop(organizer_id, None)


@router.post("/api/backup/import/cancel")
async def cancel_import(organizer_id: str = Depends(get_current_organizer)):
    """Stop the running import before its next stage."""
    cancel_event = _running_imports.get(organizer_id)
    if cancel_event is None:
        raise HTTPException(status_code=404, detail="No import is running")
    cancel_event.set()
    return {"success": True}


@router.post("/api/backup/reset")
@limiter.limit(BACKUP_RATE_LIMIT)
async def reset_data(
    request: Request,
    payload: ResetRequest,
    organizer_id: str = Depends(get_current_organizer),
    session: AsyncSession = Depends(get_db_session),
):
    """Irreversibly delete all of the organizer's data."""
    if not payload.confirm:
        raise HTTPException(status_code=400, detail="Reset must be confirmed")
    try:
        deleted = await data_reset_service.clear_organizer_data(
            session, organizer_id, include_settings=payload.include_settings
        )
        return {"success": True, "deleted": deleted}
    except Exception as e:
        raise to_http_error(e, "resetting data")
