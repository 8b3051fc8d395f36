import pathlib
import random
import time

import pytest

from conftest import FakeCodec
from app.errors import AssemblyError, ValidationError
from app.storage.workspace import LEASE_FILENAME

IMAGES = [
    "https://cdn.example.com/photos/a.png",
    "https://cdn.example.com/photos/b.jpg?size=large",
    "https://picsum.photos/720/1280?random=3",
]
AUDIO = "https://cdn.example.com/audio/track.mp3"


def _resources(audio_seconds="10"):
    resources = {url: f"image-{i}".encode() for i, url in enumerate(IMAGES)}
    resources[AUDIO] = audio_seconds.encode()
    return resources


def _manifest_segments(workspace_dir: pathlib.Path) -> list[str]:
    lines = (workspace_dir / "filelist.txt").read_text(encoding="utf-8").splitlines()
    return [pathlib.Path(line[len("file '") : -1]).name for line in lines]


def test_assemble_builds_segments_manifest_and_output(build_assembly, workspaces, codec):
    service = build_assembly(_resources())

    result = service.assemble(IMAGES, AUDIO, 2)

    workspace_dir = workspaces.root / result.workspace
    assert result.id == result.workspace
    assert result.segments == 3
    assert pathlib.Path(result.output_path) == workspace_dir / "output.mp4"
    assert sorted(p.name for p in workspace_dir.iterdir()) == [
        "audio.mp3",
        "filelist.txt",
        "img_0.png",
        "img_1.jpg",
        "img_2.jpg",
        "output.mp4",
        "seg_0.mp4",
        "seg_1.mp4",
        "seg_2.mp4",
    ]
    assert not (workspace_dir / LEASE_FILENAME).exists()
    assert _manifest_segments(workspace_dir) == ["seg_0.mp4", "seg_1.mp4", "seg_2.mp4"]
    assert len(codec.segment_calls()) == 3
    concat = codec.calls[-1]
    assert concat[concat.index("-f") + 1] == "concat"
    assert "-shortest" in concat


def test_video_length_governs_when_audio_is_longer(build_assembly):
    service = build_assembly(_resources(audio_seconds="10"))

    result = service.assemble(IMAGES, AUDIO, 2)

    assert pathlib.Path(result.output_path).read_text() == "6"


def test_audio_length_governs_when_audio_is_shorter(build_assembly):
    service = build_assembly(_resources(audio_seconds="5"))

    result = service.assemble(IMAGES, AUDIO, 3)

    assert pathlib.Path(result.output_path).read_text() == "5"


def test_default_duration_is_three_seconds(build_assembly, codec):
    service = build_assembly(_resources())

    service.assemble(IMAGES, AUDIO)

    for call in codec.segment_calls():
        assert call[call.index("-t") + 1] == "3"


def test_empty_images_fail_before_any_io(build_assembly, workspaces):
    requested = []
    service = build_assembly(_resources(), requested=requested)

    with pytest.raises(ValidationError):
        service.assemble([], AUDIO, 3)

    assert requested == []
    assert not workspaces.root.exists() or list(workspaces.root.iterdir()) == []


@pytest.mark.parametrize(
    "images,audio,duration",
    [
        (IMAGES, None, 3),
        (IMAGES, "", 3),
        (IMAGES, AUDIO, 0),
        (IMAGES, AUDIO, -1),
        (["https://cdn.example.com/a.png", "  "], AUDIO, 3),
    ],
)
def test_invalid_requests_are_rejected(build_assembly, workspaces, images, audio, duration):
    service = build_assembly(_resources())

    with pytest.raises(ValidationError):
        service.assemble(images, audio, duration)

    assert not workspaces.root.exists() or list(workspaces.root.iterdir()) == []


def _manifest_sources(codec, workspace_dir):
    """Bytes of the source image behind each manifest entry, in manifest order."""
    seg_to_image = {
        pathlib.Path(call[-1]).name: pathlib.Path(call[call.index("-i") + 1]) for call in codec.segment_calls()
    }
    return [seg_to_image[name].read_bytes() for name in _manifest_segments(workspace_dir)]


def test_reversed_input_reverses_manifest(build_assembly, workspaces, codec):
    service = build_assembly(_resources())

    forward = service.assemble(IMAGES, AUDIO, 1)
    forward_sources = _manifest_sources(codec, workspaces.root / forward.workspace)
    codec.calls.clear()
    backward = service.assemble(list(reversed(IMAGES)), AUDIO, 1)
    backward_sources = _manifest_sources(codec, workspaces.root / backward.workspace)

    assert forward_sources == [b"image-0", b"image-1", b"image-2"]
    assert backward_sources == list(reversed(forward_sources))


def test_parallel_fan_out_preserves_order(build_assembly, workspaces):
    class SlowCodec(FakeCodec):
        def run(self, args):
            time.sleep(random.uniform(0, 0.02))
            return super().run(args)

    images = [f"https://cdn.example.com/photos/{i}.png" for i in range(8)]
    resources = {url: f"image-{i}".encode() for i, url in enumerate(images)}
    resources[AUDIO] = b"100"
    codec = SlowCodec(max_concurrent=3)
    service = build_assembly(resources, max_parallel=4, codec_override=codec)

    result = service.assemble(images, AUDIO, 1)

    workspace_dir = workspaces.root / result.workspace
    assert _manifest_segments(workspace_dir) == [f"seg_{i}.mp4" for i in range(8)]
    for i in range(8):
        assert (workspace_dir / f"img_{i}.png").read_bytes() == f"image-{i}".encode()
    assert pathlib.Path(result.output_path).read_text() == "8"


def test_download_failure_aborts_and_keeps_workspace(build_assembly, workspaces, codec):
    resources = _resources()
    del resources[IMAGES[1]]
    service = build_assembly(resources)

    with pytest.raises(AssemblyError) as excinfo:
        service.assemble(IMAGES, AUDIO, 3)

    assert excinfo.value.stage == "download_images"
    assert excinfo.value.cause.code == "download_failed"
    assert codec.calls == []
    leftovers = list(workspaces.root.iterdir())
    assert len(leftovers) == 1
    assert (leftovers[0] / "img_0.png").exists()


def test_missing_audio_download_is_its_own_stage(build_assembly):
    resources = _resources()
    del resources[AUDIO]
    service = build_assembly(resources)

    with pytest.raises(AssemblyError) as excinfo:
        service.assemble(IMAGES, AUDIO, 3)

    assert excinfo.value.stage == "download_audio"


def test_transcode_failure_carries_codec_diagnostics(build_assembly, workspaces):
    codec = FakeCodec(fail_on="img_1")
    service = build_assembly(_resources(), codec_override=codec)

    with pytest.raises(AssemblyError) as excinfo:
        service.assemble(IMAGES, AUDIO, 3)

    error = excinfo.value
    assert error.stage == "transcode"
    assert "Invalid data" in error.detail
    assert error.to_dict()["error"] == "assembly_failed"
    assert not any("concat" in call for call in codec.calls)
    workspace_dir = next(workspaces.root.iterdir())
    assert (workspace_dir / "seg_0.mp4").exists()
    assert not (workspace_dir / "output.mp4").exists()


def test_lease_failure_is_a_workspace_stage_error(build_assembly, unleasable, codec):
    service = build_assembly(_resources())

    with pytest.raises(AssemblyError) as excinfo:
        service.assemble(IMAGES, AUDIO, 3)

    assert excinfo.value.stage == "workspace"
    assert excinfo.value.cause.code == "workspace_failed"
    assert excinfo.value.to_dict()["error"] == "assembly_failed"
    assert codec.calls == []
