from skyvault.kernel.snapshots.snapshot_manager import SnapshotManager

__all__ = ["SnapshotManager"]
