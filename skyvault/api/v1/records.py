"""
Record endpoints.

Ids are AT-URIs full of slashes, so they travel as query parameters rather
than path segments.
"""

import json
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query, status

from skyvault.api.deps import ServicesDep
from skyvault.schemas.common import ListResponse
from skyvault.schemas.entry import Entry
from skyvault.schemas.record import (
    ChainVerification,
    FieldFilter,
    MatchMode,
    PutResult,
    RecordCreate,
    RecordRow,
)

router = APIRouter()


def _filter_value(raw: str) -> Any:
    """Query strings are text; accept JSON literals so numbers and booleans match."""
    try:
        return json.loads(raw)
    except ValueError:
        return raw


@router.post("/{kind}", response_model=PutResult, status_code=status.HTTP_201_CREATED)
async def put_record(kind: str, body: RecordCreate, services: ServicesDep):
    """Store a new version of a record with its provenance entry."""
    if body.version is not None:
        # Explicit versions bypass the ledger pairing; they come from imports and replays
        return await services.store.put(kind, body.id, body.data, body.snapshot, body.version)
    return await services.store.put_with_provenance(
        kind, body.id, body.data, body.snapshot, linked_to=body.linked_to,
    )


@router.get("/{kind}", response_model=RecordRow)
async def get_record(
    kind: str,
    services: ServicesDep,
    id: str = Query(..., min_length=1),
    version: Optional[str] = None,
    snapshot: Optional[str] = None,
):
    """The given version of a record, else its latest one."""
    row = await services.store.get_row(kind, id, version, snapshot)
    if row is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Record not found: {kind}:{id}")
    return row


@router.get("/{kind}/search", response_model=ListResponse[RecordRow])
async def search_records(
    kind: str,
    services: ServicesDep,
    pattern: str = "",
    match: MatchMode = MatchMode.PREFIX,
    field: Optional[str] = None,
    value: Optional[str] = None,
    snapshot: Optional[str] = None,
):
    """Latest version of every matching id, newest-modified first."""
    field_filter = None
    if field is not None:
        if value is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="'value' is required with 'field'",
            )
        field_filter = FieldFilter(field=field, value=_filter_value(value))
    rows = await services.store.search(kind, pattern, field_filter, match, snapshot)
    return ListResponse[RecordRow].of(rows)


@router.get("/{kind}/entry", response_model=Entry)
async def get_entry(
    kind: str,
    services: ServicesDep,
    id: str = Query(..., min_length=1),
    version: Optional[str] = None,
    snapshot: Optional[str] = None,
):
    """Record joined with its provenance (synthetic when the ledger has none)."""
    entry = await services.store.get_entry(kind, id, version, snapshot)
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Record not found: {kind}:{id}")
    return entry


@router.get("/{kind}/history", response_model=ListResponse[RecordRow])
async def get_history(
    kind: str,
    services: ServicesDep,
    id: str = Query(..., min_length=1),
    snapshot: Optional[str] = None,
):
    """Every version of a record in one snapshot, oldest first."""
    return ListResponse[RecordRow].of(await services.store.history(kind, id, snapshot))


@router.get("/{kind}/verify", response_model=ChainVerification)
async def verify_record_chain(
    kind: str,
    services: ServicesDep,
    id: str = Query(..., min_length=1),
    snapshot: Optional[str] = None,
):
    return await services.store.verify_chain(kind, id, snapshot)
