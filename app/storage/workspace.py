from __future__ import annotations

import contextlib
import logging
import os
import pathlib
import shutil
import time
from dataclasses import dataclass
from typing import Iterator, Optional
from uuid import uuid4

from app.errors import WorkspaceError

LEASE_FILENAME = ".lease"


@dataclass(frozen=True)
class Workspace:
    id: str
    path: pathlib.Path

    def file(self, name: str) -> pathlib.Path:
        return self.path / name


class WorkspaceManager:
    """Allocates one directory per job under ``root`` and reclaims old ones by age.

    A running job may hold a lease on its workspace; the sweep leaves leased
    directories alone until the lease itself is older than ``lease_ttl_minutes``.
    """

    def __init__(
        self,
        root: str | os.PathLike,
        lease_ttl_minutes: float = 240.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.root = pathlib.Path(root).resolve()
        self.lease_ttl_minutes = lease_ttl_minutes
        self.log = logger or logging.getLogger(__name__)

    def ensure_root(self) -> pathlib.Path:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspaceError(f"cannot create workspace root {self.root}: {exc}") from exc
        return self.root

    def allocate(self, prefix: str = "") -> Workspace:
        workspace_id = str(uuid4())
        path = self.root / f"{prefix}{workspace_id}"
        try:
            path.mkdir(parents=True)
        except OSError as exc:
            raise WorkspaceError(f"cannot create workspace {path}: {exc}") from exc
        self.log.info("workspace allocated", extra={"workspace_id": workspace_id, "path": str(path)})
        return Workspace(id=workspace_id, path=path)

    @contextlib.contextmanager
    def lease(self, workspace: Workspace) -> Iterator[Workspace]:
        lease_path = workspace.path / LEASE_FILENAME
        try:
            lease_path.write_text(str(os.getpid()), encoding="utf-8")
        except OSError as exc:
            raise WorkspaceError(f"cannot lease workspace {workspace.path}: {exc}") from exc
        try:
            yield workspace
        finally:
            with contextlib.suppress(FileNotFoundError):
                lease_path.unlink()

    def reclaim(self, threshold_minutes: float = 60.0, now: float | None = None) -> int:
        if not self.root.is_dir():
            return 0
        now = time.time() if now is None else now
        cutoff = now - threshold_minutes * 60
        lease_cutoff = now - self.lease_ttl_minutes * 60
        removed = 0
        try:
            entries = list(os.scandir(self.root))
        except OSError:
            self.log.warning("workspace root unreadable", extra={"root": str(self.root)}, exc_info=True)
            return 0
        for entry in entries:
            try:
                if _entry_age_reference(entry) >= cutoff:
                    continue
                if entry.is_dir(follow_symlinks=False):
                    if _lease_held(pathlib.Path(entry.path), lease_cutoff):
                        self.log.info("skipping leased workspace", extra={"workspace": entry.name})
                        continue
                    shutil.rmtree(entry.path)
                else:
                    os.remove(entry.path)
                removed += 1
            except OSError:
                self.log.warning("workspace reclaim failed", extra={"workspace": entry.name}, exc_info=True)
                continue
        if removed:
            self.log.info("workspaces reclaimed", extra={"removed": removed, "threshold_minutes": threshold_minutes})
        return removed


def _entry_age_reference(entry: os.DirEntry) -> float:
    stats = entry.stat(follow_symlinks=False)
    return stats.st_mtime or stats.st_ctime or 0.0


def _lease_held(path: pathlib.Path, lease_cutoff: float) -> bool:
    try:
        lease_mtime = (path / LEASE_FILENAME).stat().st_mtime
    except FileNotFoundError:
        return False
    return lease_mtime >= lease_cutoff
