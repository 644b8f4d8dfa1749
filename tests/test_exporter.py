"""测试导出：空操作、读取失败整体中止、重名处理与忙碌标记。"""

from __future__ import annotations

import asyncio
import io
import zipfile
from datetime import date
from pathlib import Path

import pytest

from ultraart.core.config import BatchConfig
from ultraart.core.exceptions import ExportBusyError, ExportFetchError
from ultraart.core.exporter import ArchiveExporter, bundle_filename, export_filename, unique_names
from ultraart.core.models import ItemStatus, ProcessedOutput


class RecordingSink:
    extension = ".bundle"

    def __init__(self) -> None:
        self.calls: list[list[tuple[str, bytes]]] = []

    def bundle(self, entries):
        self.calls.append(list(entries))
        return b"bundle"


def test_export_without_completed_items_is_noop(make_item) -> None:
    sink = RecordingSink()
    exporter = ArchiveExporter(sink=sink)
    items = [make_item("a"), make_item("b", ItemStatus.ERROR), make_item("c", ItemStatus.PROCESSING)]

    assert asyncio.run(exporter.export(items)) is None
    assert asyncio.run(exporter.export([])) is None
    assert sink.calls == []


def test_export_bundles_completed_items_in_order(make_item) -> None:
    items = [
        make_item("a", ItemStatus.COMPLETED, name="cat.final.PNG",
                  output=ProcessedOutput(width=1, height=1, dpi=300, data=b"A")),
        make_item("b", ItemStatus.ERROR, name="broken.png"),
        make_item("c", ItemStatus.COMPLETED, name="dog.jpg",
                  output=ProcessedOutput(width=1, height=1, dpi=300, data=b"C")),
    ]

    bundle = asyncio.run(ArchiveExporter().export(items, today=date(2026, 1, 2)))

    assert bundle.name == "UltraArt_Batch_2026-01-02.zip"
    assert bundle.entries == ["cat.final_UPSCALED.png", "dog_UPSCALED.png"]
    with zipfile.ZipFile(io.BytesIO(bundle.payload)) as archive:
        assert archive.read("cat.final_UPSCALED.png") == b"A"
        assert archive.read("dog_UPSCALED.png") == b"C"


def test_fetch_failure_aborts_whole_export(make_item, tmp_path: Path) -> None:
    sink = RecordingSink()
    exporter = ArchiveExporter(sink=sink)
    missing = ProcessedOutput(width=1, height=1, dpi=300, path=tmp_path / "gone.png")
    items = [
        make_item("a", ItemStatus.COMPLETED),
        make_item("b", ItemStatus.COMPLETED, output=missing),
    ]

    with pytest.raises(ExportFetchError):
        asyncio.run(exporter.export(items))

    assert sink.calls == []
    assert not exporter.busy
    assert [item.status for item in items] == [ItemStatus.COMPLETED, ItemStatus.COMPLETED]
    assert items[0].output.read_bytes() == b"result"


def test_spilled_outputs_are_read_from_disk(make_item, tmp_path: Path) -> None:
    spilled = tmp_path / "item.png"
    spilled.write_bytes(b"on-disk")
    sink = RecordingSink()
    items = [make_item("a", ItemStatus.COMPLETED, output=ProcessedOutput(width=1, height=1, dpi=300, path=spilled))]

    bundle = asyncio.run(ArchiveExporter(sink=sink).export(items, today=date(2026, 3, 4)))

    assert bundle.name == "UltraArt_Batch_2026-03-04.bundle"
    assert sink.calls == [[("a_UPSCALED.png", b"on-disk")]]


def test_concurrent_export_is_rejected(make_item) -> None:
    exporter = ArchiveExporter()
    items = [make_item("a", ItemStatus.COMPLETED)]

    async def scenario():
        return await asyncio.gather(exporter.export(items), exporter.export(items), return_exceptions=True)

    first, second = asyncio.run(scenario())

    assert first is not None and first.entries == ["a_UPSCALED.png"]
    assert isinstance(second, ExportBusyError)


def test_naming_conventions(make_item) -> None:
    config = BatchConfig(output_suffix="_BIG", bundle_prefix="Art")

    assert export_filename(make_item("x", name="no_extension"), config) == "no_extension_BIG.png"
    assert bundle_filename(config, ".zip", date(2025, 12, 31)) == "Art_2025-12-31.zip"
    assert unique_names(["a.png", "a.png", "b.png", "a.png", "a_1.png"]) == [
        "a.png",
        "a_1.png",
        "b.png",
        "a_2.png",
        "a_1_1.png",
    ]


def test_released_output_aborts_export(make_item) -> None:
    released = ProcessedOutput(width=1, height=1, dpi=300, data=b"gone")
    released.release()
    items = [make_item("a", ItemStatus.COMPLETED), make_item("b", ItemStatus.COMPLETED, output=released)]
    exporter = ArchiveExporter()

    with pytest.raises(OSError):
        released.read_bytes()
    with pytest.raises(ExportFetchError):
        asyncio.run(exporter.export(items))
    assert not exporter.busy
