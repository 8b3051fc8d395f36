from __future__ import annotations

import logging
import pathlib
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import ExitStack
from typing import Callable, List, Optional, Sequence, TypeVar

from app.clients.fetcher import AssetFetcher
from app.config import Settings
from app.errors import AssemblyError, ServiceError, ValidationError
from app.media.ffmpeg import FFmpegRunner, write_concat_manifest
from app.models.domain import AssemblyResult
from app.storage.workspace import Workspace, WorkspaceManager

T = TypeVar("T")
R = TypeVar("R")

MANIFEST_NAME = "filelist.txt"
OUTPUT_NAME = "output.mp4"


class AssemblyService:
    def __init__(
        self,
        workspaces: WorkspaceManager,
        fetcher: AssetFetcher,
        codec: FFmpegRunner,
        max_parallel: int = 1,
        default_duration: float = 3.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.workspaces = workspaces
        self.fetcher = fetcher
        self.codec = codec
        self.max_parallel = max(1, max_parallel)
        self.default_duration = default_duration
        self.log = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: Settings, workspaces: WorkspaceManager) -> "AssemblyService":
        fetcher = AssetFetcher(
            timeout=settings.download_timeout,
            connect_timeout=settings.download_connect_timeout,
        )
        codec = FFmpegRunner(
            binary=settings.ffmpeg_binary,
            timeout=settings.ffmpeg_timeout,
            max_concurrent=settings.max_concurrent_encodes,
            width=settings.segment_width,
            height=settings.segment_height,
        )
        return cls(
            workspaces=workspaces,
            fetcher=fetcher,
            codec=codec,
            max_parallel=settings.max_parallel_fetches,
            default_duration=settings.default_duration_per_image,
        )

    def assemble(
        self,
        images: Sequence[str] | None,
        audio: str | None,
        duration_per_image: float | None = None,
    ) -> AssemblyResult:
        images = list(images or [])
        duration = self.default_duration if duration_per_image is None else duration_per_image
        self._validate(images, audio, duration)

        workspace = self._stage("workspace", self.workspaces.allocate, None)
        job_id = workspace.id
        self.log.info(
            "assembly started",
            extra={"job_id": job_id, "images": len(images), "duration_per_image": duration},
        )
        with ExitStack() as stack:
            self._stage("workspace", lambda: stack.enter_context(self.workspaces.lease(workspace)), job_id)
            image_paths = self._stage(
                "download_images",
                lambda: self._fan_out(
                    lambda item: self.fetcher.fetch(item[1], workspace.path, f"img_{item[0]}", ".jpg"),
                    list(enumerate(images)),
                ),
                job_id,
            )
            audio_path = self._stage(
                "download_audio",
                lambda: self.fetcher.fetch(audio, workspace.path, "audio", ".mp3"),
                job_id,
            )
            segment_paths = self._stage(
                "transcode",
                lambda: self._fan_out(
                    lambda item: self.codec.make_segment(item[1], workspace.file(f"seg_{item[0]}.mp4"), duration),
                    list(enumerate(image_paths)),
                ),
                job_id,
            )
            manifest = self._stage(
                "manifest",
                lambda: self._write_manifest(workspace, segment_paths),
                job_id,
            )
            output_path = self._stage(
                "concat",
                lambda: self.codec.concat_with_audio(manifest, audio_path, workspace.file(OUTPUT_NAME)),
                job_id,
            )
        self.log.info("assembly finished", extra={"job_id": job_id, "output": str(output_path)})
        return AssemblyResult(
            id=job_id,
            output_path=str(output_path),
            workspace=workspace.path.name,
            segments=len(segment_paths),
            duration_per_image=duration,
        )

    def _validate(self, images: List[str], audio: str | None, duration: float) -> None:
        if not images:
            raise ValidationError("images array required")
        for index, url in enumerate(images):
            if not isinstance(url, str) or not url.strip():
                raise ValidationError(f"image {index} must be a non-empty url")
        if not audio or not str(audio).strip():
            raise ValidationError("audio url required")
        if duration is None or duration <= 0:
            raise ValidationError("durationPerImage must be a positive number")

    def _stage(self, stage: str, action: Callable[[], R], job_id: str | None) -> R:
        try:
            return action()
        except Exception as exc:
            if not isinstance(exc, ServiceError):
                exc = ServiceError(f"{type(exc).__name__}: {exc}")
            self.log.warning(
                "assembly stage failed",
                extra={"job_id": job_id, "stage": stage, "error": exc.code},
                exc_info=exc,
            )
            raise AssemblyError(stage, exc) from exc

    def _write_manifest(self, workspace: Workspace, segments: Sequence[pathlib.Path]) -> pathlib.Path:
        missing = [str(path) for path in segments if not pathlib.Path(path).is_file()]
        if missing:
            raise ServiceError("segments missing before concatenation", detail=missing)
        try:
            return write_concat_manifest(workspace.file(MANIFEST_NAME), segments)
        except OSError as exc:
            raise ServiceError(f"cannot write concat manifest: {exc}") from exc

    def _fan_out(self, func: Callable[[T], R], items: List[T]) -> List[R]:
        """Apply ``func`` to every item with bounded parallelism, results in input order.

        The first failure (in input order) is raised once every started task has
        settled; tasks that haven't started yet are cancelled.
        """
        if self.max_parallel == 1 or len(items) <= 1:
            return [func(item) for item in items]
        executor = ThreadPoolExecutor(max_workers=min(self.max_parallel, len(items)))
        futures: List[Future] = [executor.submit(func, item) for item in items]
        try:
            return [future.result() for future in futures]
        except BaseException:
            for future in futures:
                future.cancel()
            raise
        finally:
            executor.shutdown(wait=True)
