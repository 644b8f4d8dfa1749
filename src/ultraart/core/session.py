"""批次会话：提交、设置、处理、分析、移除与导出的统一入口。"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import date
from typing import Any, Callable, Iterable, Optional

from ultraart.core.config import BatchConfig, UpscaleSettings
from ultraart.core.exceptions import AnalysisServiceError, CapacityExceeded, DecodeError
from ultraart.core.exporter import ArchiveExporter, ArchiveSink, ExportBundle
from ultraart.core.models import BatchSummary, Item, ItemStatus, Submission
from ultraart.core.settings import SettingsResolver
from ultraart.core.store import ItemStore
from ultraart.processing.image_loader import probe_dimensions
from ultraart.processing.pipeline import BatchOrchestrator, ProgressCallback, TaskRunner
from ultraart.processing.worker import run_upscale
from ultraart.services.analysis import NO_ANALYSIS_MESSAGE, AnalysisService, request_analysis

LOGGER = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})

DimensionProbe = Callable[[bytes], tuple[int, int]]


class UpscaleSession:
    """一个批次的全部状态。所有方法都应在同一个事件循环线程中调用。"""

    def __init__(
        self,
        config: Optional[BatchConfig] = None,
        defaults: Optional[UpscaleSettings] = None,
        *,
        runner: TaskRunner = run_upscale,
        sink: Optional[ArchiveSink] = None,
        probe: DimensionProbe = probe_dimensions,
    ) -> None:
        self.config = config or BatchConfig()
        self.store = ItemStore()
        self.settings = SettingsResolver(self.store, defaults)
        self.orchestrator = BatchOrchestrator(self.store, self.config, runner=runner)
        self.exporter = ArchiveExporter(self.config, sink)
        self._probe = probe
        self._probe_tasks: set[asyncio.Task[None]] = set()
        self._deferred_probes: list[str] = []

    @property
    def items(self) -> list[Item]:
        return self.store.items()

    def get(self, item_id: str) -> Optional[Item]:
        return self.store.get(item_id)

    def submit(self, submissions: Iterable[Submission]) -> list[Item]:
        """提交一组文件。超过批次上限时整组拒绝，现有条目保持不变。"""

        incoming = list(submissions)
        accepted = [entry for entry in incoming if entry.mime_type.lower() in SUPPORTED_MIME_TYPES]
        ignored = len(incoming) - len(accepted)
        if ignored:
            LOGGER.info("忽略 %d 个非图片文件", ignored)

        limit = self.config.max_items
        if len(self.store) + len(accepted) > limit:
            raise CapacityExceeded(f"每批最多 {limit} 张图片，当前 {len(self.store)} 张，新增 {len(accepted)} 张")

        defaults = self.settings.snapshot()
        items = [
            Item(
                item_id=self.store.next_id(),
                original_name=entry.name,
                mime_type=entry.mime_type.lower(),
                source=entry.data,
                settings=defaults,
            )
            for entry in accepted
        ]
        self.store.extend(items)
        LOGGER.info("已提交 %d 张图片，批次共 %d 张", len(items), len(self.store))
        self._schedule_probes(item.item_id for item in items)
        return items

    def apply_batch_settings(self, **partial: Any) -> None:
        self.settings.apply_batch_settings(**partial)

    def apply_item_settings(self, item_id: str, **partial: Any) -> None:
        self.settings.apply_item_settings(item_id, **partial)

    def remove(self, item_id: str) -> Item:
        return self.store.remove(item_id)

    def clear(self) -> None:
        self.store.clear()

    def status_counts(self) -> Counter[ItemStatus]:
        """按当前条目状态统计数量。"""

        return Counter(item.status for item in self.store)

    async def probe_pending(self) -> None:
        """启动尚未执行的尺寸探测并等待全部完成。"""

        deferred, self._deferred_probes = self._deferred_probes, []
        for item_id in deferred:
            self._start_probe(item_id)
        if self._probe_tasks:
            await asyncio.gather(*list(self._probe_tasks))

    async def run_batch(self, progress_callback: ProgressCallback = None) -> BatchSummary:
        return await self.orchestrator.run_batch(progress_callback)

    async def retry(self, item_id: str) -> Item:
        return await self.orchestrator.run_item(item_id)

    def request_stop(self) -> None:
        self.orchestrator.request_stop()

    async def export(self, today: Optional[date] = None) -> Optional[ExportBundle]:
        return await self.exporter.export(self.store.items(), today=today)

    async def analyze(self, item_id: str, service: AnalysisService) -> str:
        """调用外部分析服务；失败时记录"暂无分析结果"，不影响条目状态。"""

        item = self.store.require(item_id)
        try:
            text = await asyncio.to_thread(
                request_analysis, service, item.source, self.config.analysis_preview_chars
            )
        except AnalysisServiceError as exc:
            LOGGER.warning("条目 %s 分析失败：%s", item_id, exc)
            text = NO_ANALYSIS_MESSAGE
        self.store.update(item_id, analysis=text)
        return text

    def _schedule_probes(self, item_ids: Iterable[str]) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._deferred_probes.extend(item_ids)
            return
        for item_id in item_ids:
            self._start_probe(item_id)

    def _start_probe(self, item_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self._run_probe(item_id))
        self._probe_tasks.add(task)
        task.add_done_callback(self._probe_tasks.discard)

    async def _run_probe(self, item_id: str) -> None:
        item = self.store.get(item_id)
        if item is None:
            return
        try:
            width, height = await asyncio.to_thread(self._probe, item.source)
        except DecodeError as exc:
            LOGGER.warning("无法读取 %s 的尺寸：%s", item.original_name, exc)
            return
        except Exception:  # noqa: BLE001
            LOGGER.exception("条目 %s 尺寸探测异常，保留未知尺寸", item_id)
            return

        current = self.store.get(item_id)
        if current is None:
            LOGGER.debug("条目 %s 在尺寸探测完成前已移除，丢弃结果", item_id)
            return
        if current.has_dimensions:
            return
        self.store.update(item_id, width=width, height=height)
