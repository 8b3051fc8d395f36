from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Any, Optional, Sequence

from app.clients.fetcher import AssetFetcher
from app.clients.youtube import ResumableUploadClient
from app.config import Settings
from app.errors import DownloadError, UploadError, ValidationError, WorkspaceError
from app.models.domain import UploadMetadata
from app.storage.workspace import WorkspaceManager

UPLOAD_PREFIX = "upload_"
VIDEO_NAME = "video.mp4"


class UploadService:
    """Downloads a finished video into its own workspace and publishes it."""

    def __init__(
        self,
        workspaces: WorkspaceManager,
        fetcher: AssetFetcher,
        client: ResumableUploadClient,
        default_privacy_status: str = "public",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.workspaces = workspaces
        self.fetcher = fetcher
        self.client = client
        self.default_privacy_status = default_privacy_status
        self.log = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings, workspaces: WorkspaceManager) -> "UploadService":
        return cls(
            workspaces=workspaces,
            fetcher=AssetFetcher(
                timeout=settings.download_timeout,
                connect_timeout=settings.download_connect_timeout,
            ),
            client=ResumableUploadClient(
                endpoint=settings.upload_endpoint,
                timeout=settings.upload_timeout,
                connect_timeout=settings.download_connect_timeout,
            ),
            default_privacy_status=settings.default_privacy_status,
        )

    def upload(
        self,
        video_url: str | None,
        access_token: str | None,
        title: str = "Short Video",
        description: str = "",
        tags: Sequence[str] | None = None,
        privacy_status: str | None = None,
    ) -> dict[str, Any]:
        if not video_url:
            raise ValidationError("videoUrl required")
        if not access_token:
            raise ValidationError("accessToken required")
        metadata = UploadMetadata(
            title=title or "Short Video",
            description=description or "",
            tags=list(tags or []),
            privacy_status=privacy_status or self.default_privacy_status,
        )
        try:
            workspace = self.workspaces.allocate(prefix=UPLOAD_PREFIX)
        except WorkspaceError as exc:
            raise UploadError(exc.message) from exc
        with ExitStack() as stack:
            try:
                stack.enter_context(self.workspaces.lease(workspace))
            except WorkspaceError as exc:
                raise UploadError(exc.message) from exc
            try:
                video_path = self.fetcher.fetch_to(video_url, workspace.file(VIDEO_NAME))
            except DownloadError as exc:
                raise UploadError(exc.message, detail=exc.detail) from exc
            result = self.client.upload(access_token, metadata, video_path)
        self.log.info("video published", extra={"workspace_id": workspace.id, "title": metadata.title})
        return result
