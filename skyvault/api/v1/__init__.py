"""
API v1 routes.
"""

from fastapi import APIRouter

from skyvault.api.v1 import browse, records, snapshots, threads, workspaces

router = APIRouter()

router.include_router(records.router, prefix="/records", tags=["Records"])
router.include_router(snapshots.router, prefix="/snapshots", tags=["Snapshots"])
router.include_router(threads.router, prefix="/threads", tags=["Threads"])
router.include_router(workspaces.router, prefix="/workspaces", tags=["Workspaces"])
router.include_router(browse.router, tags=["Browse"])
