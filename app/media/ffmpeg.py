from __future__ import annotations

import logging
import os
import pathlib
import subprocess
import threading
from typing import Iterable, List, Optional, Sequence

from app.errors import TranscodeError


def escape_concat_path(path: str | os.PathLike) -> str:
    """Quote a path for a concat demuxer ``file`` directive."""
    text = os.fspath(path)
    return "'" + text.replace("'", "'\\''") + "'"


def write_concat_manifest(manifest_path: str | os.PathLike, segments: Iterable[str | os.PathLike]) -> pathlib.Path:
    manifest_path = pathlib.Path(manifest_path)
    lines = [f"file {escape_concat_path(os.path.abspath(segment))}" for segment in segments]
    manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest_path


class FFmpegRunner:
    """Runs ffmpeg with fixed argument vectors.

    Every invocation goes through a process-wide semaphore so that concurrent
    jobs can't start more than ``max_concurrent`` encoders at once.
    """

    def __init__(
        self,
        binary: str = "ffmpeg",
        timeout: float | None = 600.0,
        max_concurrent: int = 2,
        width: int = 720,
        height: int = 1280,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.binary = binary
        self.timeout = timeout
        self.width = width
        self.height = height
        self._slots = threading.BoundedSemaphore(max(1, max_concurrent))
        self.log = logger or logging.getLogger(__name__)

    def segment_args(self, image_path: str | os.PathLike, output_path: str | os.PathLike, duration: float) -> List[str]:
        return [
            self.binary,
            "-y",
            "-nostdin",
            "-loop",
            "1",
            "-i",
            os.fspath(image_path),
            "-t",
            _format_seconds(duration),
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            "-vf",
            f"scale={self.width}:{self.height}",
            os.fspath(output_path),
        ]

    def concat_args(
        self,
        manifest_path: str | os.PathLike,
        audio_path: str | os.PathLike,
        output_path: str | os.PathLike,
    ) -> List[str]:
        return [
            self.binary,
            "-y",
            "-nostdin",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            os.fspath(manifest_path),
            "-i",
            os.fspath(audio_path),
            "-map",
            "0:v:0",
            "-map",
            "1:a:0",
            "-c:v",
            "libx264",
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            "aac",
            "-shortest",
            os.fspath(output_path),
        ]

    def make_segment(self, image_path: str | os.PathLike, output_path: str | os.PathLike, duration: float) -> pathlib.Path:
        """Encode ``duration`` seconds of a looped still image."""
        self.run(self.segment_args(image_path, output_path, duration))
        return pathlib.Path(output_path)

    def concat_with_audio(
        self,
        manifest_path: str | os.PathLike,
        audio_path: str | os.PathLike,
        output_path: str | os.PathLike,
    ) -> pathlib.Path:
        """Concatenate the manifest's segments and mux the audio track, shortest stream wins."""
        self.run(self.concat_args(manifest_path, audio_path, output_path))
        return pathlib.Path(output_path)

    def run(self, args: Sequence[str]) -> subprocess.CompletedProcess:
        with self._slots:
            self.log.debug("running ffmpeg", extra={"ffmpeg_args": list(args)})
            try:
                result = subprocess.run(
                    list(args),
                    capture_output=True,
                    encoding="utf-8",
                    errors="replace",
                    timeout=self.timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                stderr = _decode(exc.stderr)
                raise TranscodeError(f"ffmpeg timed out after {self.timeout}s", stderr=stderr) from exc
            except OSError as exc:
                raise TranscodeError(f"ffmpeg could not be started: {exc}") from exc
        if result.returncode != 0:
            self.log.warning(
                "ffmpeg failed",
                extra={"returncode": result.returncode, "output": args[-1]},
            )
            raise TranscodeError(
                f"ffmpeg exited with code {result.returncode}",
                returncode=result.returncode,
                stderr=result.stderr or "",
            )
        return result


def _format_seconds(value: float) -> str:
    return f"{float(value):g}"


def _decode(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
