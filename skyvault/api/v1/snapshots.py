"""
Snapshot endpoints: lifecycle, export/import, duplication and comparison.
"""

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, status

from skyvault.api.deps import ServicesDep
from skyvault.kernel.errors import SnapshotNotFound
from skyvault.schemas.common import ListResponse, SuccessResponse
from skyvault.schemas.snapshot import (
    SnapshotComparison,
    SnapshotCreate,
    SnapshotDuplicate,
    SnapshotExport,
    SnapshotInfo,
)

router = APIRouter()


async def _info_or_404(services, snapshot_id: str) -> SnapshotInfo:
    info = await services.snapshots.get(snapshot_id)
    if info is None:
        raise SnapshotNotFound(snapshot_id)
    return info


@router.get("", response_model=ListResponse[SnapshotInfo])
async def list_snapshots(services: ServicesDep):
    """All snapshots, newest first."""
    return ListResponse[SnapshotInfo].of(await services.snapshots.list())


@router.post("", response_model=SnapshotInfo, status_code=status.HTTP_201_CREATED)
async def create_snapshot(body: SnapshotCreate, services: ServicesDep):
    """Create a snapshot; an existing name is returned unchanged."""
    snapshot_id = await services.snapshots.create(body.name)
    return await _info_or_404(services, snapshot_id)


# Declared before /{snapshot_id} so "compare" is not taken as an id
@router.get("/compare", response_model=SnapshotComparison)
async def compare_snapshots(snapshot1: str, snapshot2: str, services: ServicesDep):
    """Structural diff; only kinds with differences are listed."""
    return await services.snapshots.compare(snapshot1, snapshot2)


@router.get("/{snapshot_id}", response_model=SnapshotInfo)
async def get_snapshot(snapshot_id: str, services: ServicesDep):
    return await _info_or_404(services, snapshot_id)


@router.delete("/{snapshot_id}", response_model=SuccessResponse)
async def delete_snapshot(snapshot_id: str, services: ServicesDep):
    if not await services.snapshots.delete(snapshot_id):
        raise SnapshotNotFound(snapshot_id)
    return SuccessResponse(message=f"Snapshot {snapshot_id} deleted")


@router.get("/{snapshot_id}/export", response_model=SnapshotExport)
async def export_snapshot(snapshot_id: str, services: ServicesDep):
    exported = await services.snapshots.export(snapshot_id)
    if exported is None:
        raise SnapshotNotFound(snapshot_id)
    return exported


@router.post("/{snapshot_id}/import", response_model=SuccessResponse)
async def import_snapshot(snapshot_id: str, body: Dict[str, Any], services: ServicesDep):
    """Load an export into `snapshot_id`, creating it when needed."""
    if not await services.snapshots.import_(snapshot_id, body):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid snapshot export",
        )
    return SuccessResponse(message=f"Snapshot {snapshot_id} imported")


@router.post("/{snapshot_id}/duplicate", response_model=SnapshotInfo, status_code=status.HTTP_201_CREATED)
async def duplicate_snapshot(snapshot_id: str, body: SnapshotDuplicate, services: ServicesDep):
    new_id = await services.snapshots.duplicate(snapshot_id, body.target_id)
    if new_id is None:
        raise SnapshotNotFound(snapshot_id)
    return await _info_or_404(services, new_id)
