"""测试提交、容量限制、尺寸探测、分析服务与端到端流程。"""

from __future__ import annotations

import asyncio
import io
import struct
import threading
import zipfile
import zlib
from datetime import date

import pytest
from PIL import Image

from ultraart.core.config import BatchConfig, UpscaleSettings
from ultraart.core.exceptions import AnalysisServiceError, CapacityExceeded
from ultraart.core.models import ItemStatus
from ultraart.core.session import UpscaleSession
from ultraart.processing.density import read_density
from ultraart.services.analysis import NO_ANALYSIS_MESSAGE


def test_capacity_rejects_whole_incoming_set(make_submission) -> None:
    session = UpscaleSession(BatchConfig(max_items=3))
    existing = session.submit([make_submission(name=f"a{i}.png") for i in range(3)])

    with pytest.raises(CapacityExceeded):
        session.submit([make_submission(name="extra.png")])

    assert [item.item_id for item in session.items] == [item.item_id for item in existing]


def test_capacity_is_all_or_nothing(make_submission) -> None:
    session = UpscaleSession(BatchConfig(max_items=3))
    session.submit([make_submission(name="a.png")])

    with pytest.raises(CapacityExceeded):
        session.submit([make_submission(name=f"b{i}.png") for i in range(3)])

    assert len(session.items) == 1


def test_non_image_submissions_are_ignored(make_submission) -> None:
    session = UpscaleSession(BatchConfig(max_items=2))

    items = session.submit(
        [
            make_submission(name="notes.txt", data=b"hello", mime_type="text/plain"),
            make_submission(name="photo.jpg", mime_type="image/jpeg"),
            make_submission(name="art.webp", mime_type="IMAGE/WEBP"),
            make_submission(name="anim.gif", mime_type="image/gif"),
        ]
    )

    assert [item.original_name for item in items] == ["photo.jpg", "art.webp"]
    assert items[1].mime_type == "image/webp"


def test_new_items_take_current_defaults(make_submission) -> None:
    session = UpscaleSession(defaults=UpscaleSettings(upscale_factor=2))
    session.apply_batch_settings(target_dpi=600)

    (item,) = session.submit([make_submission()])

    assert item.status is ItemStatus.IDLE
    assert item.settings == UpscaleSettings(upscale_factor=2, target_dpi=600)
    assert (item.width, item.height) == (0, 0)


def test_dimensions_are_probed_asynchronously(make_submission, png_bytes) -> None:
    session = UpscaleSession()
    (item,) = session.submit([make_submission(data=png_bytes(size=(13, 7)))])
    assert session.get(item.item_id).width == 0

    asyncio.run(session.probe_pending())

    probed = session.get(item.item_id)
    assert (probed.width, probed.height) == (13, 7)


def test_probe_result_for_removed_item_is_discarded(make_submission) -> None:
    started = threading.Event()
    release = threading.Event()

    def slow_probe(data: bytes) -> tuple[int, int]:
        started.set()
        release.wait(5)
        return 10, 10

    session = UpscaleSession(probe=slow_probe)

    async def scenario() -> None:
        (item,) = session.submit([make_submission()])
        await asyncio.to_thread(started.wait, 5)
        session.remove(item.item_id)
        release.set()
        await session.probe_pending()

    asyncio.run(scenario())

    assert session.items == []


def test_unreadable_source_keeps_zero_dimensions(make_submission) -> None:
    session = UpscaleSession()
    (item,) = session.submit([make_submission(data=b"broken")])

    asyncio.run(session.probe_pending())

    assert session.get(item.item_id).width == 0


class FakeAnalysis:
    def __init__(self, text: str = "", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.received: list[bytes] = []

    def describe(self, image_bytes: bytes) -> str:
        self.received.append(image_bytes)
        if self.error is not None:
            raise self.error
        return self.text


def test_analysis_text_is_truncated(make_submission) -> None:
    session = UpscaleSession(BatchConfig(analysis_preview_chars=10))
    (item,) = session.submit([make_submission()])
    service = FakeAnalysis(text="  flat colour illustration with clean line art  ")

    text = asyncio.run(session.analyze(item.item_id, service))

    assert text == "flat colou"
    assert session.get(item.item_id).analysis == "flat colou"
    assert service.received == [item.source]


@pytest.mark.parametrize("error", [AnalysisServiceError("quota"), TimeoutError("slow"), RuntimeError("boom")])
def test_analysis_failure_is_not_fatal(make_submission, error: Exception) -> None:
    session = UpscaleSession()
    (item,) = session.submit([make_submission()])

    text = asyncio.run(session.analyze(item.item_id, FakeAnalysis(error=error)))

    current = session.get(item.item_id)
    assert text == NO_ANALYSIS_MESSAGE
    assert current.analysis == NO_ANALYSIS_MESSAGE
    assert current.status is ItemStatus.IDLE
    assert current.error is None


def test_end_to_end_transparent_pngs(png_bytes, make_submission) -> None:
    sizes = {"sprite": (8, 6), "logo": (5, 9), "icon": (4, 4)}
    session = UpscaleSession(defaults=UpscaleSettings(upscale_factor=2, target_dpi=72, preserve_style=False))
    session.submit([make_submission(name=f"{stem}.png", data=png_bytes(size=size)) for stem, size in sizes.items()])

    session.apply_batch_settings(upscale_factor=4, target_dpi=300, preserve_style=True)

    async def scenario():
        await session.probe_pending()
        summary = await session.run_batch()
        bundle = await session.export(today=date(2026, 10, 18))
        return summary, bundle

    summary, bundle = asyncio.run(scenario())

    assert len(summary.completed) == 3
    for item in session.items:
        assert item.status is ItemStatus.COMPLETED
        payload = item.output.read_bytes()
        assert read_density(payload) == 300
        with Image.open(io.BytesIO(payload)) as img:
            assert img.format == "PNG"
            assert img.mode == "RGBA"
            assert img.size == (item.width * 4, item.height * 4)
            assert img.size == tuple(4 * v for v in sizes[item.stem])

    assert bundle is not None
    assert bundle.name == "UltraArt_Batch_2026-10-18.zip"
    with zipfile.ZipFile(io.BytesIO(bundle.payload)) as archive:
        assert archive.namelist() == ["sprite_UPSCALED.png", "logo_UPSCALED.png", "icon_UPSCALED.png"]
    # 导出不改变条目状态
    assert session.status_counts()[ItemStatus.COMPLETED] == 3


def test_remove_and_clear_release_outputs(make_submission) -> None:
    session = UpscaleSession(defaults=UpscaleSettings(upscale_factor=1))
    first, second = session.submit([make_submission(name="a.png"), make_submission(name="b.png")])
    asyncio.run(session.run_batch())

    output = session.get(first.item_id).output
    session.remove(first.item_id)
    assert output.released

    remaining = session.get(second.item_id).output
    session.clear()
    assert remaining.released
    assert session.items == []


def _oversized_png(png_bytes) -> bytes:
    """文件头声明 20000x20000 的 PNG，Pillow 只读文件头即报解压炸弹。"""

    data = bytearray(png_bytes(size=(1, 1)))
    data[16:24] = struct.pack(">II", 20000, 20000)
    data[29:33] = struct.pack(">I", zlib.crc32(bytes(data[12:29])) & 0xFFFFFFFF)
    return bytes(data)


def test_oversized_header_does_not_break_batch(png_bytes, make_submission) -> None:
    session = UpscaleSession(defaults=UpscaleSettings(upscale_factor=2))
    good, bomb = session.submit(
        [
            make_submission(name="ok.png", data=png_bytes(size=(3, 3))),
            make_submission(name="bomb.png", data=_oversized_png(png_bytes)),
        ]
    )

    async def scenario():
        await session.probe_pending()
        return await session.run_batch()

    summary = asyncio.run(scenario())

    assert session.get(good.item_id).status is ItemStatus.COMPLETED
    assert (session.get(good.item_id).width, session.get(good.item_id).height) == (3, 3)
    assert session.get(bomb.item_id).status is ItemStatus.ERROR
    assert session.get(bomb.item_id).width == 0
    assert summary.failed == [bomb.item_id]


def test_unexpected_probe_error_is_logged(make_submission, caplog) -> None:
    def broken_probe(data: bytes) -> tuple[int, int]:
        raise RuntimeError("probe crashed")

    session = UpscaleSession(probe=broken_probe)
    (item,) = session.submit([make_submission()])

    asyncio.run(session.probe_pending())

    assert session.get(item.item_id).width == 0
    assert "尺寸探测异常" in caplog.text
