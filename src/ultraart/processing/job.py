"""命令行任务：扫描、提交、批量放大、写出文件、打包与报告。"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from ultraart.core.config import JobConfig
from ultraart.core.exporter import ExportBundle, export_filename
from ultraart.core.models import BatchSummary, Item, ItemStatus
from ultraart.core.output_manager import OutputManager
from ultraart.core.report import ReportRow, write_csv_report
from ultraart.core.scanner import collect_source_files, load_submissions
from ultraart.core.session import UpscaleSession
from ultraart.processing.pipeline import ProgressCallback
from ultraart.processing.validation import measure_fidelity

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class JobResult:
    """一次命令行任务的产出。"""

    summary: BatchSummary
    rows: list[ReportRow] = field(default_factory=list)
    bundle_path: Optional[Path] = None
    report_path: Optional[Path] = None

    @property
    def written(self) -> list[ReportRow]:
        return [row for row in self.rows if row.output_path is not None]


def run_job(config: JobConfig, progress_callback: ProgressCallback = None) -> JobResult:
    """同步入口，内部使用 asyncio 事件循环驱动会话。"""

    LOGGER.info("开始扫描输入路径")
    paths = collect_source_files(config)
    LOGGER.info("发现 %d 个候选图片文件", len(paths))

    session = UpscaleSession(config.batch, config.settings)
    session.submit(load_submissions(paths))

    output_manager = OutputManager(config.output)
    try:
        summary, bundle = asyncio.run(_drive(session, config, progress_callback))
        rows = [_write_item(item, output_manager, config) for item in session.items]
        bundle_path = _write_bundle(bundle, output_manager) if bundle is not None else None
    finally:
        session.clear()

    result = JobResult(summary=summary, rows=rows, bundle_path=bundle_path)
    result.report_path = _write_report(config, output_manager, rows)
    return result


async def _drive(
    session: UpscaleSession,
    config: JobConfig,
    progress_callback: ProgressCallback,
) -> tuple[BatchSummary, Optional[ExportBundle]]:
    await session.probe_pending()
    summary = await session.run_batch(progress_callback)
    bundle = await session.export() if config.write_bundle else None
    return summary, bundle


def _write_item(item: Item, output_manager: OutputManager, config: JobConfig) -> ReportRow:
    row = ReportRow(
        source_name=item.original_name,
        status=item.status.value,
        width=item.width,
        height=item.height,
        message=item.error,
    )
    if item.status is not ItemStatus.COMPLETED or item.output is None:
        return row

    output = item.output
    row.output_width = output.width
    row.output_height = output.height
    row.dpi = output.dpi

    decision = output_manager.decide_destination(export_filename(item, config.batch))
    if decision.action == "skip":
        LOGGER.info("跳过输出（已存在）：%s", decision.destination)
        row.status = "skip-existing"
        row.message = decision.note
        return row

    assert decision.destination is not None
    payload = output.read_bytes()
    output_manager.write_bytes(payload, decision.destination)
    row.output_path = decision.destination
    row.message = decision.note

    if config.validate_outputs:
        metrics = measure_fidelity(item.source, payload)
        row.phash_distance = metrics.phash_distance
        row.ssim = metrics.ssim
    return row


def _write_bundle(bundle: ExportBundle, output_manager: OutputManager) -> Optional[Path]:
    decision = output_manager.decide_destination(bundle.name)
    if decision.action == "skip" or decision.destination is None:
        LOGGER.info("跳过压缩包（已存在）：%s", decision.destination)
        return None
    output_manager.write_bytes(bundle.payload, decision.destination)
    return decision.destination


def _write_report(config: JobConfig, output_manager: OutputManager, rows: list[ReportRow]) -> Optional[Path]:
    try:
        return write_csv_report(rows, output_manager.output_dir, config.report_filename)
    except OSError as exc:
        LOGGER.error("写入报告失败：%s", exc)
        return None
