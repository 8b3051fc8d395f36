import os
import pathlib
import re
import tempfile
import threading

import httpx
import pytest

_RUNTIME_DIR = tempfile.mkdtemp(prefix="shorts-assembler-tests-")
os.environ.setdefault("SHORTS_ASSEMBLER_WORKSPACE_ROOT", os.path.join(_RUNTIME_DIR, "tmp"))
os.environ.setdefault("SHORTS_ASSEMBLER_LEDGER_PATH", os.path.join(_RUNTIME_DIR, "published.json"))
os.environ.setdefault("SHORTS_ASSEMBLER_CLEANUP_ENABLED", "false")

from app.clients.fetcher import AssetFetcher  # noqa: E402
from app.errors import TranscodeError  # noqa: E402
from app.media.ffmpeg import FFmpegRunner  # noqa: E402
from app.services.assembly_service import AssemblyService  # noqa: E402
from app.storage.workspace import LEASE_FILENAME, WorkspaceManager  # noqa: E402

_MANIFEST_LINE = re.compile(r"^file '(?P<path>.*)'$")


class FakeCodec(FFmpegRunner):
    """Stands in for the ffmpeg binary.

    Segment files hold their duration as text, audio files hold theirs, and the
    concat step writes ``min(sum(segments), audio)`` into the output.
    """

    def __init__(self, fail_on: str | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fail_on = fail_on
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def run(self, args):
        args = list(args)
        with self._lock:
            self.calls.append(args)
        output = pathlib.Path(args[-1])
        if "-loop" in args:
            source = args[args.index("-i") + 1]
            if self.fail_on and self.fail_on in source:
                raise TranscodeError("ffmpeg exited with code 1", returncode=1, stderr=f"{source}: Invalid data")
            output.write_text(args[args.index("-t") + 1], encoding="utf-8")
        elif "concat" in args:
            inputs = [args[i + 1] for i, value in enumerate(args) if value == "-i"]
            manifest, audio = inputs
            total = 0.0
            for line in pathlib.Path(manifest).read_text(encoding="utf-8").splitlines():
                match = _MANIFEST_LINE.match(line)
                path = match.group("path").replace("'\\''", "'")
                total += float(pathlib.Path(path).read_text(encoding="utf-8"))
            audio_duration = float(pathlib.Path(audio).read_text(encoding="utf-8"))
            output.write_text(f"{min(total, audio_duration):g}", encoding="utf-8")
        return None

    def segment_calls(self):
        return [call for call in self.calls if "-loop" in call]


def media_transport(resources: dict[str, bytes], requested: list[str] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if requested is not None:
            requested.append(url)
        if url not in resources:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=resources[url])

    return httpx.MockTransport(handler)


@pytest.fixture
def workspaces(tmp_path):
    return WorkspaceManager(tmp_path / "workspaces")


@pytest.fixture
def codec():
    return FakeCodec()


@pytest.fixture
def build_assembly(workspaces, codec):
    def factory(resources, requested=None, max_parallel=1, codec_override=None):
        return AssemblyService(
            workspaces=workspaces,
            fetcher=AssetFetcher(transport=media_transport(resources, requested)),
            codec=codec_override or codec,
            max_parallel=max_parallel,
        )

    return factory


@pytest.fixture
def unleasable(monkeypatch, workspaces):
    """New workspaces come with a directory where the lease file should go."""
    allocate = workspaces.allocate

    def allocate_blocked(*args, **kwargs):
        workspace = allocate(*args, **kwargs)
        (workspace.path / LEASE_FILENAME).mkdir()
        return workspace

    monkeypatch.setattr(workspaces, "allocate", allocate_blocked)
    return workspaces
