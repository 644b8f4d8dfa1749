"""报告生成工具。"""

from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

HEADER = [
    "source_name",
    "output_path",
    "status",
    "width",
    "height",
    "output_width",
    "output_height",
    "dpi",
    "message",
    "phash_distance",
    "ssim",
]


@dataclass(slots=True)
class ReportRow:
    """单个条目的报告记录。"""

    source_name: str
    status: str
    width: int = 0
    height: int = 0
    output_path: Optional[Path] = None
    output_width: Optional[int] = None
    output_height: Optional[int] = None
    dpi: Optional[int] = None
    message: Optional[str] = None
    phash_distance: Optional[float] = None
    ssim: Optional[float] = None


def write_csv_report(rows: Iterable[ReportRow], output_dir: Path, filename: str) -> Path:
    """将处理结果写入 CSV 报告。"""

    report_path = output_dir / filename
    with report_path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADER)
        for record in rows:
            writer.writerow(
                [
                    record.source_name,
                    str(record.output_path) if record.output_path else "",
                    record.status,
                    record.width,
                    record.height,
                    _format_int(record.output_width),
                    _format_int(record.output_height),
                    _format_int(record.dpi),
                    record.message or "",
                    _format_phash(record.phash_distance),
                    _format_ssim(record.ssim),
                ]
            )
    return report_path


def _format_int(value: int | None) -> str:
    if value is None:
        return ""
    return str(value)


def _format_phash(value: float | None) -> str:
    if value is None:
        return ""
    return str(int(round(value)))


def _format_ssim(value: float | None) -> str:
    if value is None:
        return ""
    return f"{value:.6f}"
