"""批处理编排：按提交顺序逐个处理条目，单条失败不影响后续条目。"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Optional

from ultraart.core.config import BatchConfig
from ultraart.core.exceptions import BatchBusyError, ItemBusyError
from ultraart.core.models import BatchSummary, Item, ItemStatus, ProcessedOutput
from ultraart.core.progress import ProgressUpdate
from ultraart.core.store import ItemStore
from ultraart.processing.worker import UpscaleTask, run_upscale

LOGGER = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "处理失败"
RUNNABLE_STATUSES = frozenset({ItemStatus.IDLE, ItemStatus.ERROR})

ProgressCallback = Optional[Callable[[ProgressUpdate], None]]
TaskRunner = Callable[[UpscaleTask], ProcessedOutput]


def is_runnable(item: Item) -> bool:
    """条目是否参与批处理：状态为 IDLE/ERROR 且已启用。"""

    return item.status in RUNNABLE_STATUSES and item.settings.enabled


class BatchOrchestrator:
    """驱动条目经历 IDLE → PROCESSING → COMPLETED/ERROR 的状态机。

    同一时刻最多一个条目处于 PROCESSING，峰值内存约为一张解码后的
    大图。CPU 密集的步骤在工作线程中执行，条目集合只在事件循环中更新。
    """

    def __init__(
        self,
        store: ItemStore,
        config: Optional[BatchConfig] = None,
        runner: TaskRunner = run_upscale,
    ) -> None:
        self._store = store
        self._config = config or BatchConfig()
        self._runner = runner
        self._running = False
        self._stop_requested = False

    @property
    def is_running(self) -> bool:
        return self._running

    def request_stop(self) -> None:
        """不再启动后续条目；正在处理的条目会继续完成。"""

        if self._running:
            LOGGER.info("已请求停止批处理")
            self._stop_requested = True

    async def run_batch(self, progress_callback: ProgressCallback = None) -> BatchSummary:
        """处理所有 IDLE/ERROR 且启用的条目，返回按状态重新统计的结果。"""

        self._acquire()
        processed: list[str] = []
        stopped = False
        try:
            queue = [item.item_id for item in self._store.items() if is_runnable(item)]
            total = len(queue)
            LOGGER.info("开始批处理，共 %d 个条目", total)
            if total == 0:
                _emit_progress(progress_callback, 0, 0, message="没有需要处理的图片", status="finished")
                return BatchSummary(processed=[], completed=[], failed=[])

            _emit_progress(progress_callback, 0, total, message="开始执行处理任务")
            for index, item_id in enumerate(queue, start=1):
                if self._stop_requested:
                    LOGGER.info("批处理已停止，剩余 %d 个条目未处理", total - index + 1)
                    stopped = True
                    break
                result = await self._process(item_id)
                if result is None:
                    message = f"跳过 {item_id}"
                elif result.status is ItemStatus.COMPLETED:
                    processed.append(item_id)
                    message = f"完成 {result.original_name}"
                else:
                    processed.append(item_id)
                    message = f"失败 {result.original_name}"
                _emit_progress(progress_callback, index, total, item_id=item_id, message=message)
        finally:
            self._release()

        summary = self._summarize(processed, stopped)
        _emit_progress(
            progress_callback,
            total,
            total,
            message="处理已停止" if stopped else "处理完成",
            status="stopped" if stopped else "finished",
        )
        LOGGER.info("批处理结束：成功 %d，失败 %d", len(summary.completed), len(summary.failed))
        return summary

    async def run_item(self, item_id: str) -> Item:
        """单独处理（或重试）一个条目。"""

        item = self._store.require(item_id)
        if item.status is ItemStatus.PROCESSING:
            raise ItemBusyError(f"条目正在处理: {item.original_name}")
        if item.status not in RUNNABLE_STATUSES:
            LOGGER.info("条目 %s 已完成，无需处理", item_id)
            return item

        self._acquire()
        try:
            result = await self._process(item_id, require_enabled=False)
        finally:
            self._release()
        return result if result is not None else self._store.require(item_id)

    async def _process(self, item_id: str, *, require_enabled: bool = True) -> Optional[Item]:
        current = self._store.get(item_id)
        if current is None:
            LOGGER.info("条目 %s 已被移除，跳过", item_id)
            return None
        runnable = is_runnable(current) if require_enabled else current.status in RUNNABLE_STATUSES
        if not runnable:
            LOGGER.info("条目 %s 状态已变化 (%s)，跳过", item_id, current.status.value)
            return None

        # 从这里开始 settings 即为本次运行冻结的快照
        running = self._store.replace(replace(current, status=ItemStatus.PROCESSING, error=None))
        task = UpscaleTask(
            item_id=item_id,
            source=running.source,
            settings=running.settings,
            spill_dir=self._config.spill_dir,
        )

        worker = asyncio.ensure_future(asyncio.to_thread(self._runner, task))
        cancelled = False
        # 工作线程无法中断：取消只阻止后续条目，当前条目跑完后才释放忙碌标记
        while not worker.done():
            try:
                await asyncio.wait({worker})
            except asyncio.CancelledError:
                if not cancelled:
                    LOGGER.info("批处理被取消，等待条目 %s 处理结束", item_id)
                cancelled = True

        updated = self._record_result(item_id, running.original_name, worker)
        if cancelled:
            raise asyncio.CancelledError
        return updated

    def _record_result(self, item_id: str, name: str, worker: asyncio.Future) -> Optional[Item]:
        try:
            output = worker.result()
        except Exception:  # noqa: BLE001
            LOGGER.exception("条目 %s (%s) 处理失败", item_id, name)
            return self._store.update(item_id, status=ItemStatus.ERROR, error=GENERIC_FAILURE_MESSAGE)

        updated = self._store.update(item_id, status=ItemStatus.COMPLETED, output=output, error=None)
        if updated is None:
            output.release()
        return updated

    def _summarize(self, processed: list[str], stopped: bool) -> BatchSummary:
        completed: list[str] = []
        failed: list[str] = []
        for item_id in processed:
            item = self._store.get(item_id)
            if item is None:
                continue
            if item.status is ItemStatus.COMPLETED:
                completed.append(item_id)
            elif item.status is ItemStatus.ERROR:
                failed.append(item_id)
        return BatchSummary(processed=processed, completed=completed, failed=failed, stopped=stopped)

    def _acquire(self) -> None:
        if self._running:
            raise BatchBusyError("已有批处理在运行")
        self._running = True
        self._stop_requested = False

    def _release(self) -> None:
        self._running = False
        self._stop_requested = False


def _emit_progress(
    callback: ProgressCallback,
    completed: int,
    total: int,
    *,
    item_id: Optional[str] = None,
    message: Optional[str] = None,
    status: str = "running",
) -> None:
    if not callback:
        return
    callback(ProgressUpdate(total=total, completed=completed, item_id=item_id, message=message, status=status))
