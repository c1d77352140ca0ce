from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.grid import GridRowsRequest, GridRowsResponse, GridSourceMeta
from app.services.grid.errors import CALLER_INPUT_ERRORS, ExecutionError, GridQueryError, UnknownSource
from app.services.grid.service import list_sources_service, query_rows_service, source_meta_service

router = APIRouter()
_LOG = logging.getLogger("app.grid")


def _http_error(exc: GridQueryError) -> HTTPException:
    if isinstance(exc, UnknownSource):
        return HTTPException(status_code=404, detail=exc.detail)
    if isinstance(exc, CALLER_INPUT_ERRORS):
        return HTTPException(status_code=400, detail=exc.detail)
    if isinstance(exc, ExecutionError):
        return HTTPException(status_code=502, detail="Data source query failed")
    _LOG.error("Unhandled grid error: %s", exc.detail)
    return HTTPException(status_code=500, detail="Grid request failed")


@router.get("/sources")
def list_sources():
    return list_sources_service()


@router.get("/{source_name}/columns", response_model=GridSourceMeta)
def source_columns(source_name: str):
    try:
        return source_meta_service(source_name)
    except GridQueryError as exc:
        raise _http_error(exc) from exc


@router.post("/{source_name}/rows", response_model=GridRowsResponse)
def query_rows(source_name: str, request: GridRowsRequest, db: Session = Depends(get_db)):
    try:
        return query_rows_service(source_name, request, db)
    except GridQueryError as exc:
        raise _http_error(exc) from exc
