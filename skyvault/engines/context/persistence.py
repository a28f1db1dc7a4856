"""
Workspace persistence boundary and its adapters.
"""

import asyncio
import json
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote, unquote

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from skyvault.engines.context.workspace import Workspace
from skyvault.kernel.errors import DataInconsistency, StorageError
from skyvault.kernel.models import Base, WorkspaceItem, WorkspaceRow
from skyvault.logging_config import get_logger

logger = get_logger(__name__)


class WorkspacePersistence(ABC):
    """save / load / list / delete workspaces by name."""

    async def initialize(self) -> None:
        """Prepare storage. Idempotent."""

    @abstractmethod
    async def save(self, workspace: Workspace) -> None:
        ...

    @abstractmethod
    async def load(self, name: str) -> Optional[Workspace]:
        ...

    @abstractmethod
    async def list(self) -> List[str]:
        ...

    @abstractmethod
    async def delete(self, name: str) -> bool:
        ...


class InMemoryWorkspaceHandler(WorkspacePersistence):
    """Keeps serialized snapshots of workspaces in a dict."""

    def __init__(self) -> None:
        self._saved: Dict[str, Dict[str, Any]] = {}

    async def save(self, workspace: Workspace) -> None:
        # Store a serialized copy so later mutation of the live object is not "saved"
        self._saved[workspace.name] = workspace.to_dict()

    async def load(self, name: str) -> Optional[Workspace]:
        data = self._saved.get(name)
        return Workspace.from_dict(data) if data is not None else None

    async def list(self) -> List[str]:
        return sorted(self._saved)

    async def delete(self, name: str) -> bool:
        return self._saved.pop(name, None) is not None


class SqlWorkspaceHandler(WorkspacePersistence):
    """Workspaces in the `workspaces` / `workspace_items` tables."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        create_tables: bool = True,
    ):
        self.engine = engine
        self.session_maker = session_maker
        self.create_tables = create_tables

    async def initialize(self) -> None:
        if not self.create_tables:
            return
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not create workspace tables: {exc}", operation="initialize") from exc

    async def save(self, workspace: Workspace) -> None:
        data = workspace.to_dict()
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.merge(
                        WorkspaceRow(
                            name=workspace.name,
                            loaded_owner=workspace.loaded_owner,
                            labelers=data["labelers"],
                        )
                    )
                    await session.execute(
                        delete(WorkspaceItem).where(WorkspaceItem.workspace_name == workspace.name)
                    )
                    for uri, payload in data["posts"].items():
                        session.add(WorkspaceItem(
                            workspace_name=workspace.name, item_type="post", uri=uri, payload=payload,
                        ))
                    for uri, payload in data["thread_focus"].items():
                        session.add(WorkspaceItem(
                            workspace_name=workspace.name, item_type="focus", uri=uri, payload=payload,
                        ))
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not save workspace {workspace.name}: {exc}", operation="save_workspace") from exc

    async def load(self, name: str) -> Optional[Workspace]:
        try:
            async with self.session_maker() as session:
                row = await session.get(WorkspaceRow, name)
                if row is None:
                    return None
                result = await session.execute(
                    select(WorkspaceItem).where(WorkspaceItem.workspace_name == name)
                )
                items = result.scalars().all()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not load workspace {name}: {exc}", operation="load_workspace") from exc

        return Workspace.from_dict({
            "name": row.name,
            "loaded_owner": row.loaded_owner,
            "labelers": row.labelers or [],
            "posts": {i.uri: i.payload for i in items if i.item_type == "post"},
            "thread_focus": {i.uri: i.payload for i in items if i.item_type == "focus"},
        })

    async def list(self) -> List[str]:
        try:
            async with self.session_maker() as session:
                result = await session.execute(select(WorkspaceRow.name).order_by(WorkspaceRow.name))
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not list workspaces: {exc}", operation="list_workspaces") from exc

    async def delete(self, name: str) -> bool:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    await session.execute(delete(WorkspaceItem).where(WorkspaceItem.workspace_name == name))
                    result = await session.execute(delete(WorkspaceRow).where(WorkspaceRow.name == name))
            return (result.rowcount or 0) > 0
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not delete workspace {name}: {exc}", operation="delete_workspace") from exc


class FileWorkspaceHandler(WorkspacePersistence):
    """One JSON file per workspace under a directory."""

    def __init__(self, directory: Union[Path, str]):
        self.directory = Path(directory)

    def _path(self, name: str) -> Path:
        return self.directory / f"{quote(name, safe='')}.json"

    async def _run(self, operation: str, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as exc:
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    async def initialize(self) -> None:
        await self._run("initialize", lambda: self.directory.mkdir(parents=True, exist_ok=True))

    async def save(self, workspace: Workspace) -> None:
        path = self._path(workspace.name)
        content = workspace.to_dict()

        def _write() -> None:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(content, fh, ensure_ascii=False)
                os.replace(tmp, path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise

        await self._run("save_workspace", _write)

    async def load(self, name: str) -> Optional[Workspace]:
        path = self._path(name)

        def _read() -> Optional[str]:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

        text = await self._run("load_workspace", _read)
        if text is None:
            return None
        try:
            return Workspace.from_dict(json.loads(text))
        except (KeyError, TypeError, ValueError) as exc:
            issue = DataInconsistency(f"Unreadable workspace file for {name}", record_id=name)
            # Keep the bad file out of the way so the next save cannot overwrite it
            aside = path.with_name(f"{path.name}.corrupt-{datetime.now(timezone.utc):%Y%m%dT%H%M%S%f}")
            await self._run("quarantine_workspace", os.replace, path, aside)
            logger.warning(
                "%s: %s; moved to %s", issue, exc, aside.name,
                extra={"path": str(path)},
            )
            return None

    async def list(self) -> List[str]:
        def _names() -> List[str]:
            if not self.directory.is_dir():
                return []
            return sorted(unquote(p.stem) for p in self.directory.glob("*.json"))

        return await self._run("list_workspaces", _names)

    async def delete(self, name: str) -> bool:
        path = self._path(name)

        def _unlink() -> bool:
            if not path.exists():
                return False
            path.unlink()
            return True

        return await self._run("delete_workspace", _unlink)
