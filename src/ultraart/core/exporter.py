"""把已完成的结果打包为单个压缩包。"""

from __future__ import annotations

import asyncio
import io
import logging
import zipfile
from dataclasses import dataclass, field
from datetime import date
from itertools import count
from typing import Iterable, Optional, Protocol, Sequence

from ultraart.core.config import BatchConfig
from ultraart.core.exceptions import ExportBusyError, ExportFetchError
from ultraart.core.models import Item, ItemStatus

LOGGER = logging.getLogger(__name__)

BundleEntry = tuple[str, bytes]


class ArchiveSink(Protocol):
    """有序的 (文件名, 字节) 列表 -> 单个压缩包字节。"""

    extension: str

    def bundle(self, entries: Sequence[BundleEntry]) -> bytes:
        ...


class ZipArchiveSink:
    """基于 zipfile 的默认实现。"""

    extension = ".zip"

    def __init__(self, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression

    def bundle(self, entries: Sequence[BundleEntry]) -> bytes:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=self.compression) as archive:
            for name, data in entries:
                archive.writestr(name, data)
        return buffer.getvalue()


@dataclass(slots=True)
class ExportBundle:
    """导出产物。"""

    name: str
    payload: bytes = field(repr=False)
    entries: list[str]


def export_filename(item: Item, config: BatchConfig) -> str:
    """原文件名去掉扩展名，加上固定后缀与规范扩展名。"""

    return f"{item.stem}{config.output_suffix}{config.output_extension}"


def bundle_filename(config: BatchConfig, extension: str, today: Optional[date] = None) -> str:
    """固定前缀 + ISO 日期。"""

    stamp = (today or date.today()).isoformat()
    return f"{config.bundle_prefix}_{stamp}{extension}"


def unique_names(names: Iterable[str]) -> list[str]:
    """为重复的文件名追加 _1、_2 等序号。"""

    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        candidate = name
        if candidate in seen:
            stem, dot, suffix = name.rpartition(".")
            if not dot:
                stem, suffix = name, ""
            for idx in count(1):
                candidate = f"{stem}_{idx}{dot}{suffix}"
                if candidate not in seen:
                    break
        seen.add(candidate)
        result.append(candidate)
    return result


class ArchiveExporter:
    """选择已完成条目并生成压缩包。导出不会修改任何条目。"""

    def __init__(self, config: Optional[BatchConfig] = None, sink: Optional[ArchiveSink] = None) -> None:
        self._config = config or BatchConfig()
        self._sink = sink or ZipArchiveSink()
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def export(self, items: Iterable[Item], today: Optional[date] = None) -> Optional[ExportBundle]:
        """没有可导出的条目时返回 None；任一输出读取失败则整体失败。"""

        if self._busy:
            raise ExportBusyError("已有导出任务在运行")

        eligible = [item for item in items if item.status is ItemStatus.COMPLETED and item.output is not None]
        if not eligible:
            LOGGER.info("没有已完成的条目，跳过导出")
            return None

        self._busy = True
        try:
            names = unique_names(export_filename(item, self._config) for item in eligible)
            entries: list[BundleEntry] = []
            for name, item in zip(names, eligible):
                try:
                    data = await asyncio.to_thread(item.output.read_bytes)
                except OSError as exc:
                    LOGGER.error("读取输出失败 %s: %s", item.original_name, exc)
                    raise ExportFetchError(f"读取输出失败: {item.original_name}") from exc
                entries.append((name, data))

            payload = await asyncio.to_thread(self._sink.bundle, entries)
            bundle = ExportBundle(
                name=bundle_filename(self._config, self._sink.extension, today),
                payload=payload,
                entries=names,
            )
        finally:
            self._busy = False

        LOGGER.info("已导出 %s，共 %d 个文件", bundle.name, len(bundle.entries))
        return bundle
